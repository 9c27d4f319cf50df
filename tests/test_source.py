import os

import pytest

from utils.errors import FatalError
from utils.source import VideoMetadata, YoutubeSource, is_recent_long_video

from conftest import NOW


class FakeYoutubeDL:
    listing = {}

    def __init__(self, options):
        self.options = options

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False

    def extract_info(self, url, download=False):
        return self.listing[url]


def make_source(tmp_path, urls=('https://www.youtube.com/@example',)):
    return YoutubeSource(list(urls), str(tmp_path / 'videos'), str(tmp_path / 'downloaded'),
                         ydl_class=FakeYoutubeDL)


def test_metadata_fields(write_video):
    metadata = VideoMetadata.from_info_json(write_video(duration=601))

    assert metadata.source_id == 'abc123'
    assert metadata.duration == 601
    assert metadata.upload_date == '2023-01-15'
    assert metadata.file_path.endswith(os.path.join('videos', 'abc123.mp4'))
    assert metadata.split_part == 0


def test_metadata_requires_duration(write_video):
    with pytest.raises(FatalError):
        VideoMetadata.from_info_json(write_video(duration=None))


def test_list_videos_flattens_playlists_and_skips_live(tmp_path):
    FakeYoutubeDL.listing = {
        'https://www.youtube.com/@example': {
            '_type': 'playlist',
            'entries': [
                {'_type': 'playlist', 'entries': [{'id': 'a'}, {'id': 'b', 'live_status': 'is_live'}]},
                {'id': 'c'},
                {'id': 'a'},
                {'id': 'd', 'live_status': 'is_upcoming'},
            ],
        },
    }

    assert make_source(tmp_path).list_videos() == ['a', 'c']


def test_archive_tracks_done_videos(tmp_path):
    source = make_source(tmp_path)

    source.mark_done(['a', 'b'])
    source.mark_done(['b', 'c'])

    assert source.load_archive() == {'youtube a', 'youtube b', 'youtube c'}
    assert source.new_videos(['a', 'd', 'c', 'e']) == ['d', 'e']


def test_archive_can_be_replaced(tmp_path):
    source = make_source(tmp_path)
    source.mark_done(['a', 'b'])

    source.mark_done(['z'], replace=True)

    assert source.load_archive() == {'youtube z'}
    assert os.path.exists(str(tmp_path / 'downloaded') + '.bku')


def test_find_existing(tmp_path, write_video):
    write_video('one')
    write_video('two')

    candidates = make_source(tmp_path).find_existing()

    assert sorted(candidate.source_id for candidate in candidates) == ['one', 'two']
    assert all(candidate.is_local for candidate in candidates)


def test_recent_long_videos_are_delayed():
    assert is_recent_long_video({'upload_date': '20231114', 'duration': 7200}, NOW, 3600, 604800)
    assert not is_recent_long_video({'upload_date': '20231114', 'duration': 600}, NOW, 3600, 604800)
    assert not is_recent_long_video({'upload_date': '20200101', 'duration': 7200}, NOW, 3600, 604800)
    assert not is_recent_long_video({'duration': 7200}, NOW, 3600, 604800)
