import pytest
import requests

from utils.dailymotion import DailymotionClient
from utils.errors import DailymotionError, FatalError, QuotaExceeded, TransientError

from conftest import NOW


class FakeResponse:
    def __init__(self, data, status_code=200):
        self.data = data
        self.status_code = status_code

    def json(self):
        if isinstance(self.data, Exception):
            raise self.data
        return self.data


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_client(clock, *responses):
    return DailymotionClient('key', 'secret', 'refresh', session=FakeSession(responses), clock=clock)


def test_authenticate_schedules_renewal(clock):
    client = make_client(clock, FakeResponse({'access_token': 'abc', 'expires_in': 36000}))

    client.authenticate()

    assert client.access_token == 'abc'
    assert client.renew_time == NOW + 36000 - 3600
    method, url, kwargs = client.session.requests[0]
    assert url == 'https://api.dailymotion.com/oauth/token'
    assert kwargs['data']['grant_type'] == 'refresh_token'


def test_ensure_token_renews_close_to_expiry(clock):
    client = make_client(clock, FakeResponse({'access_token': 'abc', 'expires_in': 36000}),
                         FakeResponse({'access_token': 'def', 'expires_in': 36000}))
    client.ensure_token()
    clock.now += 36000 - 3600 - 1
    client.ensure_token()
    assert client.access_token == 'abc'

    clock.now += 2
    client.ensure_token()
    assert client.access_token == 'def'


def test_upload_limit_is_quota_exceeded(clock):
    error = {'error': {'code': 403, 'message': 'Upload limit exceeded',
                       'error_data': {'reason': 'upload_limit_exceeded'}}}
    client = make_client(clock, FakeResponse(error, 403))

    with pytest.raises(QuotaExceeded) as exc:
        client.create_video('https://upload.example/file')

    assert exc.value.reason == 'upload_limit_exceeded'


def test_other_errors_are_dailymotion_errors(clock):
    client = make_client(clock, FakeResponse({'error': {'code': 400, 'message': 'bad url'}}, 400),
                         FakeResponse(ValueError('no json'), 502))

    with pytest.raises(DailymotionError) as exc:
        client.create_video('bad')
    assert not isinstance(exc.value, QuotaExceeded)

    with pytest.raises(DailymotionError):
        client.get_fields('x1', ['status'])


def test_network_errors_are_transient(clock):
    client = make_client(clock, requests.ConnectionError('connection reset'))

    with pytest.raises(TransientError):
        client.get_fields('x1', ['status'])


def test_list_recent_uploads_pages(clock):
    client = make_client(clock,
                         FakeResponse({'page': 1, 'has_more': True, 'list': [{'id': 'x1'}, {'id': 'x2'}]}),
                         FakeResponse({'page': 2, 'has_more': False, 'list': [{'id': 'x3'}]}))

    videos = list(client.list_recent_uploads(NOW - 86400))

    assert [video['id'] for video in videos] == ['x1', 'x2', 'x3']
    assert client.session.requests[1][2]['params']['page'] == 2


def test_list_recent_uploads_rejects_wrong_page(clock):
    client = make_client(clock, FakeResponse({'page': 3, 'has_more': False, 'list': []}))

    with pytest.raises(FatalError):
        list(client.list_recent_uploads(NOW - 86400))


def test_measure_clock_offset_cleans_up(clock):
    client = make_client(clock,
                         FakeResponse({'id': 'p1'}),
                         FakeResponse({'created_time': NOW + 42}),
                         FakeResponse({}))

    assert client.measure_clock_offset() == 42
    assert client.session.requests[2][0] == 'DELETE'


def test_publish_requires_an_id(clock):
    client = make_client(clock, FakeResponse({}))

    with pytest.raises(DailymotionError):
        client.publish('x1', {'title': 'A video'})


def test_upload_file_uses_a_fresh_slot(clock, tmp_path):
    video = tmp_path / 'video.mp4'
    video.write_bytes(b'\0' * 16)
    client = make_client(clock,
                         FakeResponse({'upload_url': 'https://upload.example/slot1'}),
                         FakeResponse({'url': 'https://upload.example/posted/video.mp4'}))

    assert client.upload_file(str(video)) == 'https://upload.example/posted/video.mp4'
    method, url, kwargs = client.session.requests[1]
    assert (method, url) == ('POST', 'https://upload.example/slot1')
    assert 'Authorization' not in kwargs['headers']


def test_upload_file_requires_the_file(clock, tmp_path):
    with pytest.raises(FatalError):
        make_client(clock).upload_file(str(tmp_path / 'missing.mp4'))
