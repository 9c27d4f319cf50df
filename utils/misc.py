import time


def seconds_to_string(seconds):
    """ reference: https://codereview.stackexchange.com/a/120595 """
    resp = ''
    days, seconds = divmod(int(seconds), 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    for value, unit in ((days, 'day'), (hours, 'hour'), (minutes, 'minute'), (seconds, 'second')):
        if value:
            resp += f"{value} {unit}{'s' if value != 1 else ''} "
    return resp.strip() or '0 seconds'


def format_duration(seconds):
    """Format seconds as H:MM:SS, hours are not wrapped at 24"""
    seconds = max(0, int(seconds))
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"


def format_timestamp(timestamp):
    if not timestamp:
        return 'never'
    return time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(timestamp))


def dedupe(items):
    seen = set()
    unique = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            unique.append(item)
    return unique
