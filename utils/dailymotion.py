"""
Dailymotion Graph API client for dmmirror
Handles token refresh, file upload, video creation/publishing and the
account queries the allowance ledger is rebuilt from.
"""
import logging
import os
import random
import time

import requests

from .errors import DailymotionError, FatalError, QuotaExceeded, TransientError

log = logging.getLogger("dailymotion")

# renew the access token this long before it expires
TOKEN_RENEW_LEAD = 3600
UPLOAD_LIMIT_REASON = 'upload_limit_exceeded'
USER_FIELDS = ['id', 'screenname', 'username', 'limits', 'created_time', 'status', 'partner', 'verified']
UPLOAD_LIST_FIELDS = ['id', 'created_time', 'duration', 'status', 'title']


class DailymotionClient:
    API_URL = 'https://api.dailymotion.com'

    def __init__(self, api_key, api_secret, refresh_token, api_url=None, timeout=60, session=None, clock=time.time):
        self.api_key = api_key
        self.api_secret = api_secret
        self.refresh_token = refresh_token
        self.api_url = (api_url or self.API_URL).rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.clock = clock
        self.access_token = None
        self.expire_time = 0
        self.renew_time = 0

    def _url(self, path):
        if path.startswith('http://') or path.startswith('https://'):
            return path
        return f"{self.api_url}/{path.lstrip('/')}"

    def _request(self, method, path, auth=True, **kwargs):
        headers = kwargs.pop('headers', {})
        if auth and self.access_token:
            headers['Authorization'] = f"Bearer {self.access_token}"

        try:
            resp = self.session.request(method, self._url(path), headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransientError(f"{method} {path} failed: {e}")

        try:
            data = resp.json()
        except ValueError:
            raise DailymotionError(f"{method} {path} returned a non json response (HTTP {resp.status_code})")

        if isinstance(data, dict) and data.get('error'):
            error = data['error']
            if isinstance(error, dict):
                message = error.get('message') or error.get('type') or str(error)
            else:
                message = data.get('error_description') or str(error)
            exc_class = DailymotionError
            if isinstance(error, dict) and (error.get('error_data') or {}).get('reason') == UPLOAD_LIMIT_REASON:
                exc_class = QuotaExceeded
            raise exc_class(f"{method} {path} failed: {message}", data)

        if resp.status_code >= 400:
            raise DailymotionError(f"{method} {path} failed with HTTP {resp.status_code}", data)
        return data

    def _expect_id(self, data, action):
        if not isinstance(data, dict) or not data.get('id'):
            raise DailymotionError(f"Failed to {action}, no id returned", data)
        return data['id']

    def check_available(self):
        """Fail fast when the API is unreachable"""
        data = self._request('GET', '/echo', auth=False, params={'message': 'hello'})
        if data.get('message') != 'hello':
            raise FatalError(f"Dailymotion API is not available, echo returned {data!r}")

    def authenticate(self):
        data = self._request('POST', '/oauth/token', auth=False, data={
            'grant_type': 'refresh_token',
            'client_id': self.api_key,
            'client_secret': self.api_secret,
            'refresh_token': self.refresh_token,
        })
        if not data.get('access_token'):
            raise FatalError("Failed to refresh the access token, none returned")

        self.access_token = data['access_token']
        if data.get('refresh_token'):
            self.refresh_token = data['refresh_token']
        self.expire_time = int(self.clock()) + int(data.get('expires_in') or 0)
        self.renew_time = self.expire_time - TOKEN_RENEW_LEAD
        log.info("Authenticated with the Dailymotion API")

    def ensure_token(self):
        if self.access_token is None or self.clock() > self.renew_time:
            log.info("Renewing access token")
            self.authenticate()

    def get_user_info(self):
        return self._request('GET', '/me', params={'fields': ','.join(USER_FIELDS)})

    def create_upload_slot(self):
        data = self._request('GET', '/file/upload')
        if not data.get('upload_url'):
            raise DailymotionError("No upload url returned", data)
        return data['upload_url']

    def upload_bytes(self, upload_url, file_path):
        with open(file_path, 'rb') as f:
            data = self._request('POST', upload_url, auth=False,
                                 files={'file': (os.path.basename(file_path), f)})
        if not data.get('url'):
            raise DailymotionError(f"Upload of {file_path} returned no url", data)
        return data['url']

    def upload_file(self, file_path):
        """
        Send a video file to a fresh upload slot

        Returns:
            Url of the uploaded file, used to create the video
        """
        if not os.path.exists(file_path):
            raise FatalError(f"Video file {file_path} does not exist")
        return self.upload_bytes(self.create_upload_slot(), file_path)

    def create_video(self, posted_url):
        data = self._request('POST', '/me/videos', data={'url': posted_url})
        return self._expect_id(data, 'create the video')

    def publish(self, video_id, fields):
        data = self._request('POST', f"/video/{video_id}", data=dict(fields, published='true'))
        return self._expect_id(data, f"publish video {video_id}")

    def get_fields(self, video_id, fields):
        return self._request('GET', f"/video/{video_id}", params={'fields': ','.join(fields)})

    def edit_fields(self, video_id, fields):
        data = self._request('POST', f"/video/{video_id}", data=fields)
        return self._expect_id(data, f"edit video {video_id}")

    def list_recent_uploads(self, created_after):
        """Every video of the account created after a destination timestamp, page by page"""
        page = 1
        while True:
            data = self._request('GET', '/me/videos', params={
                'page': page,
                'limit': 100,
                'created_after': created_after,
                'fields': ','.join(UPLOAD_LIST_FIELDS),
            })
            if int(data.get('page') or 0) != page:
                raise FatalError(f"Unexpected page {data.get('page')!r} returned, expected {page}")
            for video in data.get('list') or []:
                yield video
            if not data.get('has_more'):
                break
            page += 1

    def measure_clock_offset(self):
        """
        Seconds the destination clock is ahead of the local clock

        Measured by creating a throwaway playlist and reading its creation time.
        """
        playlist_id = self._expect_id(
            self._request('POST', '/me/playlists', data={'name': f"DEV_timeCheck{random.randint(0, 32767)}"}),
            'create the time check playlist')
        local_time = int(self.clock())
        try:
            created = self._request('GET', f"/playlist/{playlist_id}", params={'fields': 'created_time'})
        finally:
            self._request('DELETE', f"/playlist/{playlist_id}")
        offset = int(created.get('created_time') or local_time) - local_time
        log.info(f"Destination clock is {offset} second(s) ahead of the local clock")
        return offset
