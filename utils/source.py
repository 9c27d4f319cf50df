"""
YouTube source for dmmirror
Lists channel/playlist videos, tracks what was already mirrored in a
download archive and downloads videos with their info json via yt-dlp.
"""
import json
import logging
import os
import shutil
from datetime import datetime

import yt_dlp
from yt_dlp.utils import DownloadError

from . import path
from .errors import FatalError, TransientError

log = logging.getLogger("source")

INFO_SUFFIX = '.info.json'
SOURCE_KIND = 'youtube'


class VideoMetadata:
    """A video info json, either downloaded by yt-dlp or written for a split part"""

    def __init__(self, info, info_path=None):
        for field in ('id', 'duration'):
            if info.get(field) in (None, ''):
                raise FatalError(f"Video metadata {info_path or info.get('id')} is missing required field {field!r}")
        self.info = info
        self.info_path = info_path

    @classmethod
    def from_info_json(cls, info_path):
        try:
            with open(info_path, 'r') as f:
                info = json.load(f)
        except ValueError as e:
            raise FatalError(f"Unable to parse video metadata {info_path}: {e}")
        return cls(info, info_path)

    @property
    def source_id(self):
        return self.info['id']

    @property
    def duration(self):
        return int(self.info['duration'])

    @property
    def title(self):
        return self.info.get('fulltitle') or self.info.get('title') or ''

    @property
    def description(self):
        return self.info.get('description') or ''

    @property
    def tags(self):
        return list(self.info.get('tags') or [])

    @property
    def thumbnail(self):
        return self.info.get('thumbnail') or ''

    @property
    def upload_date(self):
        """YYYY-MM-DD, or empty when unknown"""
        value = self.info.get('upload_date') or ''
        if len(value) == 8 and value.isdigit():
            return f"{value[:4]}-{value[4:6]}-{value[6:]}"
        return value

    @property
    def webpage_url(self):
        return self.info.get('webpage_url') or f"https://www.youtube.com/watch?v={self.source_id}"

    @property
    def channel_url(self):
        return self.info.get('uploader_url') or self.info.get('channel_url') or ''

    @property
    def ext(self):
        return self.info.get('ext') or 'mp4'

    @property
    def split_part(self):
        return int(self.info.get('split_part') or 0)

    @property
    def split_total(self):
        return int(self.info.get('split_total') or 0)

    @property
    def file_stem(self):
        if not self.info_path:
            return None
        return self.info_path[:-len(INFO_SUFFIX)]

    @property
    def file_path(self):
        if not self.info_path:
            return None
        return f"{self.file_stem}.{self.ext}"


class Candidate:
    """A unit of upload work: a source video id, or a local artifact already on disk"""

    def __init__(self, source_id, duration=None, metadata=None):
        self.source_id = source_id
        self.duration = duration
        self.metadata = metadata

    @classmethod
    def from_metadata(cls, metadata):
        return cls(metadata.source_id, metadata.duration, metadata)

    @property
    def is_local(self):
        return self.metadata is not None

    @property
    def part_index(self):
        return self.metadata.split_part if self.metadata else 0

    @property
    def total_parts(self):
        return self.metadata.split_total if self.metadata else 0

    def __repr__(self):
        return f"Candidate({self.source_id!r}, duration={self.duration}, local={self.is_local})"


def is_recent_long_video(info, now, delay_duration, delay_period):
    """
    True for long videos published too recently to mirror

    Freshly published long videos are often trimmed by their author shortly
    after release, so they are left for a later run.
    """
    upload_date = info.get('upload_date')
    if not upload_date or not delay_duration:
        return False
    try:
        uploaded = datetime.strptime(upload_date, '%Y%m%d').timestamp()
    except ValueError:
        log.warning(f"Unable to parse upload date {upload_date!r} of video {info.get('id')}")
        return False
    return uploaded > now - delay_period and int(info.get('duration') or 0) > delay_duration


class YoutubeSource:
    def __init__(self, urls, output_dir, archive_file, playlist_reverse=False, ydl_class=yt_dlp.YoutubeDL):
        """
        Args:
            urls: Channel or playlist urls to mirror
            output_dir: Folder downloads and their info json are written to
            archive_file: yt-dlp download archive of videos already handled
            playlist_reverse: List videos oldest first
            ydl_class: YoutubeDL implementation
        """
        self.urls = urls if isinstance(urls, list) else [urls]
        self.output_dir = output_dir
        self.archive_file = archive_file
        self.playlist_reverse = playlist_reverse
        self.ydl_class = ydl_class

    def _ydl(self, **opts):
        options = {
            'quiet': True,
            'no_warnings': True,
            'noprogress': True,
            'logger': log,
        }
        options.update(opts)
        return self.ydl_class(options)

    def _flatten(self, info):
        if not info:
            return
        if info.get('_type') in ('playlist', 'multi_video'):
            for entry in info.get('entries') or []:
                yield from self._flatten(entry)
        else:
            yield info

    def list_videos(self):
        """Ids of every finished video at the source urls"""
        video_ids = []
        with self._ydl(extract_flat='in_playlist', skip_download=True, playlistreverse=self.playlist_reverse) as ydl:
            for url in self.urls:
                try:
                    info = ydl.extract_info(url, download=False)
                except DownloadError as e:
                    raise TransientError(f"Unable to list videos of {url}: {e}")
                for entry in self._flatten(info):
                    if entry.get('live_status') in ('is_live', 'is_upcoming'):
                        continue
                    if entry.get('id') and entry['id'] not in video_ids:
                        video_ids.append(entry['id'])
        log.info(f"Found {len(video_ids)} video(s) at {len(self.urls)} source url(s)")
        return video_ids

    def load_archive(self):
        archive = set()
        if not os.path.exists(self.archive_file):
            return archive
        with open(self.archive_file, 'r') as f:
            for line in f:
                line = line.strip()
                if line:
                    archive.add(line)
        return archive

    def new_videos(self, video_ids):
        archive = self.load_archive()
        return [video_id for video_id in video_ids if f"{SOURCE_KIND} {video_id}" not in archive]

    def mark_done(self, video_ids, replace=False):
        """Add video ids to the download archive, or replace it with them"""
        if replace:
            if os.path.exists(self.archive_file):
                shutil.copyfile(self.archive_file, f"{self.archive_file}.bku")
            archive = set()
        else:
            archive = self.load_archive()

        added = [video_id for video_id in video_ids if f"{SOURCE_KIND} {video_id}" not in archive]
        with open(self.archive_file, 'w' if replace else 'a') as f:
            for video_id in added:
                f.write(f"{SOURCE_KIND} {video_id}\n")
        log.info(f"Marked {len(added)} video(s) as done in {self.archive_file}")
        return added

    def fetch_metadata(self, video_id):
        with self._ydl(skip_download=True) as ydl:
            try:
                info = ydl.extract_info(video_id, download=False)
            except DownloadError as e:
                raise TransientError(f"Unable to get info of video {video_id}: {e}")
        if not info:
            raise TransientError(f"No info returned for video {video_id}")
        return ydl.sanitize_info(info)

    def download(self, video_id):
        """
        Download a video and its info json into the output folder

        Returns:
            VideoMetadata
        """
        log.info(f"Downloading video {video_id}")
        opts = {
            'outtmpl': os.path.join(self.output_dir, '%(title)s.%(ext)s'),
            'format': 'best',
            'writeinfojson': True,
            'download_archive': self.archive_file,
        }
        with self._ydl(**opts) as ydl:
            try:
                info = ydl.extract_info(video_id, download=True)
            except DownloadError as e:
                raise TransientError(f"Failed to download video {video_id}: {e}")
            if not info:
                raise TransientError(f"No info returned for video {video_id}")
            filename = ydl.prepare_filename(info)

        info_path = os.path.splitext(filename)[0] + INFO_SUFFIX
        if not os.path.exists(info_path):
            raise TransientError(f"Info json {info_path} not found after download")
        metadata = VideoMetadata.from_info_json(info_path)
        if not os.path.exists(metadata.file_path):
            raise TransientError(f"Video file {metadata.file_path} not found after download")
        return metadata

    def find_existing(self):
        """Candidates for videos already downloaded or split on a previous run"""
        candidates = []
        for info_path in path.find_items(self.output_dir, INFO_SUFFIX):
            candidates.append(Candidate.from_metadata(VideoMetadata.from_info_json(info_path)))
        if candidates:
            log.info(f"Found {len(candidates)} video(s) left over from a previous run")
        return candidates
