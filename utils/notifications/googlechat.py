import logging

import requests

log = logging.getLogger("googlechat")


class GoogleChat:
    NAME = "GoogleChat"

    def __init__(self, webhook_url, thread_key=None, title='dmmirror'):
        self.webhook_url = webhook_url
        self.thread_key = thread_key
        self.title = title
        log.info("Initialized Google Chat notification agent")

    def send(self, **kwargs):
        if not self.webhook_url:
            log.error("You must specify a webhook_url when initializing this class")
            return False

        try:
            params = {}
            if self.thread_key:
                params['threadKey'] = self.thread_key
                params['messageReplyOption'] = 'REPLY_MESSAGE_FALLBACK_TO_NEW_THREAD'

            payload = {
                'text': f"*{self.title}*: {kwargs['message']}" if self.title else kwargs['message']
            }

            resp = requests.post(self.webhook_url, params=params, json=payload, timeout=30)
            if resp.status_code != 200:
                log.error(f"Google Chat webhook returned HTTP {resp.status_code}: {resp.text[:200]}")
            return resp.status_code == 200

        except requests.RequestException:
            log.exception(f"Error sending notification to {self.webhook_url}")
        return False
