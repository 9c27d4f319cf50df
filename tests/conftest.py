import copy
import json
import os

import pytest

from utils.config import Config
from utils.errors import DailymotionError
from utils.ledger import AllowanceLedger, QuotaAccountant, QuotaPolicy

NOW = 1700000000


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeDailymotion:
    def __init__(self, clock):
        self.clock = clock
        self.videos = {}
        self.status_sequences = {}
        self.uploads = []
        self.published = []
        self.edits = []
        self.recent_uploads = []
        self.create_error = None
        self.user = {
            'id': 'u1',
            'username': 'mirror',
            'screenname': 'Mirror',
            'status': 'active',
            'partner': False,
            'verified': False,
            'limits': {'video_duration': 3600, 'video_size': 4 * 1024 ** 3},
        }
        self.next_id = 1

    def check_available(self):
        pass

    def authenticate(self):
        pass

    def ensure_token(self):
        pass

    def get_user_info(self):
        return self.user

    def measure_clock_offset(self):
        return 0

    def list_recent_uploads(self, created_after):
        return [video for video in self.recent_uploads if video['created_time'] > created_after]

    def upload_file(self, file_path):
        self.uploads.append(file_path)
        return f"https://upload.example/{os.path.basename(file_path)}"

    def create_video(self, posted_url):
        if self.create_error:
            raise self.create_error
        video_id = f"x{self.next_id}"
        self.next_id += 1
        self.videos[video_id] = {'duration': 600, 'status': 'processing', 'created_time': self.clock(),
                                 'url': f"https://dm.example/video/{video_id}"}
        return video_id

    def publish(self, video_id, fields):
        self.published.append((video_id, fields))
        return video_id

    def get_fields(self, video_id, fields):
        if video_id not in self.videos:
            raise DailymotionError(f"video {video_id} not found")
        info = dict(self.videos[video_id])
        sequence = self.status_sequences.get(video_id)
        if sequence:
            info['status'] = sequence.pop(0) if len(sequence) > 1 else sequence[0]
            self.videos[video_id]['status'] = info['status']
        info['id'] = video_id
        return info

    def edit_fields(self, video_id, fields):
        self.edits.append((video_id, fields))
        self.videos.setdefault(video_id, {}).update(fields)
        return video_id


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(tmp_path, clock):
    return AllowanceLedger(str(tmp_path / 'allowance'), clock=clock)


@pytest.fixture
def policy():
    return QuotaPolicy()


@pytest.fixture
def accountant(ledger, policy, clock):
    return QuotaAccountant(ledger, policy, clock=clock)


@pytest.fixture
def fake_api(clock):
    return FakeDailymotion(clock)


@pytest.fixture
def configs():
    cfg = copy.deepcopy(Config.base_config)
    cfg['destination'].update({'api_key': 'key', 'api_secret': 'secret', 'refresh_token': 'token'})
    cfg['source']['urls'] = ['https://www.youtube.com/@example']
    return cfg


@pytest.fixture
def write_video(tmp_path):
    """Creates a downloaded video and its info json, returns the info json path"""

    def _write_video(video_id='abc123', duration=600, title='A video', size=1024, **extra):
        info = {
            'id': video_id,
            'duration': duration,
            'title': title,
            'fulltitle': title,
            'ext': 'mp4',
            'description': 'Watch this #python video',
            'tags': ['coding', 'python'],
            'upload_date': '20230115',
            'webpage_url': f"https://www.youtube.com/watch?v={video_id}",
            'uploader_url': 'https://www.youtube.com/@example',
        }
        info.update(extra)
        stem = tmp_path / 'videos' / video_id
        stem.parent.mkdir(exist_ok=True)
        info_path = f"{stem}.info.json"
        with open(info_path, 'w') as f:
            json.dump(info, f)
        with open(f"{stem}.mp4", 'wb') as f:
            f.write(b'\0' * size)
        return info_path

    return _write_video
