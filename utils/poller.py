"""
Publish state poller for dmmirror
Watches uploaded videos until the destination finishes processing them and
moves their ledger entries onto the destination's publish time.
"""
import logging
import time

from . import misc
from .errors import FatalError, TransientError
from .ledger import PublishStatus

log = logging.getLogger("poller")

INFO_FIELDS = ['id', 'created_time', 'status', 'encoding_progress', 'publishing_progress', 'published', 'duration',
               'explicit', 'url', 'title']


class PublishPoller:
    def __init__(self, api, ledger, poll_interval=30, clock=time.time, sleep=time.sleep, on_published=None):
        """
        Args:
            api: DailymotionClient
            ledger: AllowanceLedger holding the entries to check
            poll_interval: Seconds between status checks of one video
            clock: Local clock
            sleep: Sleep function
            on_published: Called with each ledger entry confirmed published, after the ledger is saved
        """
        self.api = api
        self.ledger = ledger
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep
        self.on_published = on_published

    def _video_info(self, remote_id):
        info = self.api.get_fields(remote_id, INFO_FIELDS)
        if info.get('id') != remote_id:
            raise FatalError(f"Invalid video ID {remote_id} returned {info.get('id')!r}")
        return info

    def await_publish(self, remote_id, deadline):
        """
        Poll one video until it leaves the waiting/processing/ready states or the deadline passes

        Returns:
            Tuple of (PublishStatus, info dict)
        """
        info = self._video_info(remote_id)
        status = PublishStatus.parse(info.get('status'))
        while status.is_pending:
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            log.info(f"Video {remote_id} is {status.value} (encoding {info.get('encoding_progress', 0)}%, "
                     f"publishing {info.get('publishing_progress', 0)}%)")
            self.sleep(min(self.poll_interval, remaining))
            info = self._video_info(remote_id)
            status = PublishStatus.parse(info.get('status'))

        if info.get('explicit'):
            log.warning(f"Video {remote_id} was flagged as explicit")
        return status, info

    def check_on_publishing(self, deadline):
        """
        Check every ledger entry still waiting to be published

        Published entries take the destination's created time, so the allowance
        they hold expires when the destination expires it. Entries still
        processing are stamped with the current destination time.

        Args:
            deadline: Local time to stop polling at

        Returns:
            List of the entries confirmed published
        """
        entries = self.ledger.load()
        pending = [entry for entry in entries if entry.remote_id and entry.status.is_pending]
        if not pending:
            return []

        log.info(f"Checking on {len(pending)} video(s) waiting to be published, "
                 f"until {misc.format_timestamp(deadline)} at the latest")
        confirmed = []
        for entry in pending:
            try:
                status, info = self.await_publish(entry.remote_id, deadline)
            except TransientError as e:
                log.warning(f"Unable to check on video {entry.remote_id}: {e}")
                continue

            if status is PublishStatus.PUBLISHED:
                entry.timestamp = int(info.get('created_time') or entry.timestamp)
                entry.status = status
                confirmed.append(entry)
                log.info(f"Video {entry.remote_id} has been published: {info.get('url', '')}")
            else:
                entry.timestamp = self.ledger.server_time()
                entry.status = status
                if status.is_pending:
                    log.info(f"Video {entry.remote_id} is still {status.value}, will check up on it again later")
                else:
                    log.error(f"Video {entry.remote_id} ended up {status.value or 'with no status'}")

        self.ledger.save(entries)

        if self.on_published:
            for entry in confirmed:
                self.on_published(entry)
        return confirmed
