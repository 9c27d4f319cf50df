import logging
import re

from . import misc

log = logging.getLogger("metadata")

MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 3000
MAX_PARTNER_DESCRIPTION_LENGTH = 5000
MAX_TAGS = 150

DEFAULT_DESCRIPTION_TEMPLATE = ("{description}\n\n"
                                "Originally uploaded on {upload_date} to:\n{webpage_url}\n\n"
                                "Subscribe on Youtube:\n{channel_url}\n\n"
                                "{tags}")

HASHTAG_REGEX = re.compile(r'#(\w+)')


def hashtags(text):
    return HASHTAG_REGEX.findall(text or '')


def collect_tags(metadata, appended_tags=None):
    """Source id first, then hashtags, source tags and configured tags, deduplicated"""
    tags = [metadata.source_id]
    tags.extend(hashtags(metadata.description))
    tags.extend(metadata.tags)
    tags.extend(appended_tags or [])
    tags = [tag.replace(',', ' ').strip() for tag in tags]
    return misc.dedupe([tag for tag in tags if tag])[:MAX_TAGS]


def build_title(title):
    if len(title) > MAX_TITLE_LENGTH:
        log.warning(f"Title is {len(title)} characters, trimming to {MAX_TITLE_LENGTH}")
    return title[:MAX_TITLE_LENGTH]


def build_description(metadata, template=None, is_partner=False):
    max_length = MAX_PARTNER_DESCRIPTION_LENGTH if is_partner else MAX_DESCRIPTION_LENGTH
    source_tags = misc.dedupe(hashtags(metadata.description) + metadata.tags)
    description = (template or DEFAULT_DESCRIPTION_TEMPLATE).format(
        description=metadata.description,
        title=metadata.title,
        upload_date=metadata.upload_date,
        webpage_url=metadata.webpage_url,
        channel_url=metadata.channel_url,
        tags=' '.join(f"#{tag.replace(' ', '')}" for tag in source_tags),
    ).strip()
    if len(description) > max_length:
        log.warning(f"Description is {len(description)} characters, trimming to {max_length}")
    return description[:max_length]


def publish_fields(metadata, destination, is_partner=False, title=None, next_video_id=None):
    """
    Fields sent to the destination when publishing a video

    Args:
        metadata: VideoMetadata of the video
        destination: destination config section
        is_partner: Whether the account has partner limits
        title: Overrides the metadata title
        next_video_id: Overrides the configured player_next_video, '' to clear it

    Returns:
        dict
    """
    fields = {
        'title': build_title(title if title is not None else metadata.title),
        'description': build_description(metadata, destination.get('description_template'), is_partner),
        'tags': ','.join(collect_tags(metadata, destination.get('appended_tags'))),
        'channel': destination.get('channel') or 'news',
        'published': 'true',
    }
    if destination.get('private'):
        fields['private'] = 'true'
    if destination.get('password'):
        fields['password'] = destination['password']
    if destination.get('country'):
        fields['country'] = destination['country']

    if next_video_id is None:
        next_video_id = destination.get('next_video_id') or ''
    if next_video_id:
        fields['player_next_video'] = next_video_id

    if destination.get('mirror_thumbnails') and is_partner and metadata.thumbnail:
        fields['thumbnail_url'] = metadata.thumbnail
    return fields
