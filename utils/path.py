import logging
import os

log = logging.getLogger('path')


def get_file_size(filepath):
    try:
        return os.path.getsize(filepath)
    except OSError:
        log.exception(f"Exception getting file size of {filepath}: ")
    return 0


def find_items(folder, extension=None):
    """Files directly inside folder, oldest first"""
    items = []
    if not os.path.isdir(folder):
        return items
    for name in os.listdir(folder):
        filepath = os.path.join(folder, name)
        if not os.path.isfile(filepath):
            continue
        if not extension or name.lower().endswith(extension.lower()):
            items.append(filepath)
    return sorted(items, key=lambda x: (os.path.getmtime(x), x))


def delete(path):
    if isinstance(path, list):
        for item in path:
            delete(item)
        return

    if not path or not os.path.exists(path):
        return
    try:
        os.remove(path)
        log.debug(f"Removed {path}")
    except OSError:
        log.exception(f"Exception deleting '{path}': ")
