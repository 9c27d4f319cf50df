"""
Mirror batch driver for dmmirror
Feeds candidates through admission, waits out the upload allowances,
downloads, splits, uploads and publishes them, and confirms publishing.
"""
import logging
import os
import time
from collections import deque

from . import misc, path
from .admission import AdmissionController, Decision, SchedulerState, UploadWindow
from .dailymotion import DailymotionClient
from .errors import DailymotionError, DeadlineReached, FatalError, MirrorError, QuotaExceeded, TransientError
from .ledger import AllowanceLedger, LedgerEntry, PublishStatus, QuotaAccountant, QuotaPolicy
from .metadata import publish_fields
from .poller import PublishPoller
from .published import PublishedRecord
from .session_state import RunStatistics
from .source import Candidate, VideoMetadata, YoutubeSource, is_recent_long_video
from .splitter import VideoSplitter, size_split_count

log = logging.getLogger("mirror")

# quit this long before the next scheduled run starts
QUIT_TIME_MARGIN = 300
# extra lookback when rebuilding the ledger from the account
SYNC_LOOKBACK_MARGIN = 1000


class Mirror:
    def __init__(self, configs, settings, api, source, ledger, policy, published, statistics, durations,
                 splitter=None, notify=None, ignore_allowance=False, clock=time.time, sleep=time.sleep):
        self.configs = configs
        self.settings = settings
        self.api = api
        self.source = source
        self.ledger = ledger
        self.policy = policy
        self.published = published
        self.statistics = statistics
        self.durations = durations
        self.splitter = splitter or VideoSplitter()
        self.notify = notify
        self.ignore_allowance = ignore_allowance
        self.clock = clock
        self.sleep = sleep

        quota = configs['quota']
        self.wait_before_download = int(quota['wait_before_download'])
        self.wait_before_upload = int(quota['wait_before_upload'])
        self.quit_when_window_within = int(quota['quit_when_window_within'])

        self.accountant = QuotaAccountant(ledger, policy, clock=clock)
        self.admission = AdmissionController(self.accountant, clock=clock)
        self.poller = PublishPoller(api, ledger, poll_interval=int(quota['publish_poll_interval']), clock=clock,
                                    sleep=sleep, on_published=self.on_published)
        self.state = None
        self.is_partner = False
        self.max_video_duration = 0
        self.max_video_size = 0

    @classmethod
    def from_config(cls, conf, cache, notify=None):
        configs, settings = conf.configs, conf.settings
        destination = configs['destination']
        core = configs['core']

        os.makedirs(core['output_dir'], exist_ok=True)
        api = DailymotionClient(destination['api_key'], destination['api_secret'], destination['refresh_token'],
                                api_url=destination.get('api_url'))
        source = YoutubeSource(configs['source']['urls'], core['output_dir'], settings['archive_file'],
                               playlist_reverse=configs['source'].get('playlist_reverse', False))
        splitter = VideoSplitter(core['ffmpeg_binary_path'], core['ffprobe_binary_path'],
                                 timeout=int(core['split_timeout']))
        return cls(configs, settings, api, source,
                   ledger=AllowanceLedger(settings['allowance_file']),
                   policy=QuotaPolicy.from_config(configs['quota']),
                   published=PublishedRecord(settings['published_json'], settings['published_csv']),
                   statistics=RunStatistics(settings['datadir']),
                   durations=cache.get_cache('video_durations'),
                   splitter=splitter,
                   notify=notify,
                   ignore_allowance=conf.args.get('ignore_allowance', False))

    ############################################################
    # ACCOUNT
    ############################################################

    def login(self):
        """Authenticate and load the account limits, rebuilding the ledger when there is none"""
        self.api.check_available()
        self.api.authenticate()
        user = self.api.get_user_info()
        if user.get('status') != 'active':
            raise FatalError(f"Dailymotion account {user.get('username')!r} is not active ({user.get('status')})")

        limits = user.get('limits') or {}
        self.max_video_duration = int(limits.get('video_duration') or 0)
        self.max_video_size = int(limits.get('video_size') or 0)
        self.admission.max_video_duration = self.max_video_duration
        self.is_partner = bool(user.get('partner'))
        if user.get('verified'):
            self.policy.videos_per_day = int(self.configs['quota']['videos_per_day_verified'])
        if self.configs['destination'].get('mirror_thumbnails') and not self.is_partner:
            log.error("Only partner accounts can set thumbnails, thumbnails will not be mirrored")

        log.info(f"Logged in as {user.get('screenname') or user.get('username')} "
                 f"(partner: {self.is_partner}, verified: {bool(user.get('verified'))}, "
                 f"max duration: {misc.format_duration(self.max_video_duration)}, "
                 f"max size: {self.max_video_size} bytes)")

        self.ledger.clock_offset = self.api.measure_clock_offset()
        if not self.ledger.exists():
            log.info("No allowance ledger found, rebuilding it from the account's recent uploads")
            self.sync_uploads()

    def sync_uploads(self):
        """Rebuild the allowance ledger from the uploads the account made within the allowance period"""
        created_after = self.ledger.server_time() - (self.policy.allowance_period + SYNC_LOOKBACK_MARGIN)
        entries = []
        for video in self.api.list_recent_uploads(created_after):
            status = PublishStatus.parse(video.get('status'))
            if status is PublishStatus.UNKNOWN:
                status = PublishStatus.WAITING
            entries.append(LedgerEntry(video['created_time'], video.get('duration') or 0, video['id'], status))
        self.ledger.rebuild(entries)
        return entries

    def show_uploads(self):
        """Log the uploads counting against the allowance and what is left of it"""
        created_after = self.ledger.server_time() - self.policy.allowance_period
        total = 0
        videos = list(self.api.list_recent_uploads(created_after))
        for video in sorted(videos, key=lambda v: int(v.get('created_time') or 0)):
            duration = int(video.get('duration') or 0)
            total += duration
            log.info(f"{misc.format_timestamp(self.ledger.to_local(int(video.get('created_time') or 0)))}  "
                     f"{video['id']:<10}  {misc.format_duration(duration):>9}  {video.get('status', ''):<12}  "
                     f"{video.get('title', '')}")
        log.info(f"{len(videos)} upload(s) totalling {misc.format_duration(total)} in the last "
                 f"{misc.seconds_to_string(self.policy.allowance_period)}")

        snapshot = self.accountant.recompute(self.max_video_duration)
        snapshot.log_summary()
        log.info(f"Next upload of the max duration possible at {misc.format_timestamp(snapshot.wait_until)} "
                 f"({snapshot.binding_reason.description})")
        return snapshot

    def time_offset(self):
        self.api.check_available()
        self.api.authenticate()
        return self.api.measure_clock_offset()

    ############################################################
    # RUN
    ############################################################

    def run(self, single_video=None, requested_count=None):
        """
        Mirror one batch of videos

        Existing downloads and split parts are processed first, then new videos
        at the source urls. The run quits shortly before the next scheduled run.
        """
        start_time = int(self.clock())
        interval = int(float(self.configs['schedule']['interval_hours']) * 3600)
        self.statistics.start_session()
        self.login()

        snapshot = self.accountant.recompute(0)
        window = UploadWindow.from_snapshot(snapshot, self.policy, start_time)
        quit_time = start_time + interval - QUIT_TIME_MARGIN
        source_config = self.configs['source']
        self.state = SchedulerState(window, quit_time,
                                    requested_count=requested_count,
                                    target_remaining_duration=int(source_config['target_remaining_allowance']),
                                    search_timeout=int(source_config['duration_search_timeout']),
                                    ignore_allowance=self.ignore_allowance,
                                    clock=self.clock)
        log.info(f"Upload window is {misc.format_timestamp(window.start)} to {misc.format_timestamp(window.end)}, "
                 f"quitting at {misc.format_timestamp(quit_time)}")

        if window.start > quit_time - self.quit_when_window_within:
            log.info("Upload window does not start till close to the next scheduled run, quitting")
            self.finish(wait_for_publish=False)
            return

        try:
            if single_video:
                self.statistics.add_remaining(1)
                self.process_batch([Candidate(single_video)])
            else:
                existing = self.source.find_existing()
                self.statistics.add_remaining(len(existing))
                if self.process_batch(existing):
                    try:
                        candidates = self.new_candidates()
                    except TransientError as e:
                        log.error(f"Failed to get video list: {e}")
                    else:
                        self.process_batch(candidates)
        except QuotaExceeded as e:
            log.error(f"Upload limit exceeded, uploads are suspended till the allowance period expires: {e}")
        except FatalError:
            self.finish(wait_for_publish=False)
            raise
        self.finish()

    def new_candidates(self):
        video_ids = self.source.new_videos(self.source.list_videos())
        log.info(f"{len(video_ids)} video(s) have not been mirrored yet")
        self.statistics.add_remaining(len(video_ids))
        self.state.restart_search_timeout()
        return [Candidate(video_id) for video_id in video_ids]

    def process_batch(self, candidates):
        """
        Work through candidates in order, split parts go to the front of the queue

        Returns:
            False when the batch was aborted
        """
        queue = deque(candidates)
        while queue:
            candidate = queue.popleft()
            if not candidate.is_local and self.state.search_timed_out():
                log.info("Timed out looking for a video that fits the remaining upload allowance")
                return False

            try:
                decision = self.process_candidate(candidate, queue)
            except DeadlineReached as e:
                log.info(f"{e}, video should be picked up by the next scheduled run")
                return False
            except TransientError as e:
                log.error(f"Skipping video {candidate.source_id}: {e}")
                self.statistics.record_skip(candidate.duration)
                continue
            except (FatalError, DailymotionError):
                raise
            except Exception:
                log.exception(f"Unexpected exception occurred while processing video {candidate.source_id}: ")
                self.statistics.record_skip(candidate.duration)
                continue

            if decision is Decision.ABORT_BATCH:
                return False
        return True

    def process_candidate(self, candidate, queue):
        if candidate.duration is None and not self.resolve_duration(candidate):
            self.statistics.record_skip(candidate.duration)
            return Decision.SKIP

        admission = self.admission.admit(candidate, self.state)
        if admission.decision is not Decision.PROCEED:
            log.info(admission.message)
            self.statistics.record_skip(candidate.duration)
            return admission.decision

        log.info(f"---------------- Processing YouTube video {candidate.source_id} ----------------")
        admission.snapshot.log_summary()

        if candidate.is_local:
            metadata = candidate.metadata
        else:
            self.wait_for_allowance(admission.effective_duration, self.wait_before_download)
            metadata = self.source.download(candidate.source_id)

        if not os.path.exists(metadata.file_path):
            raise TransientError(f"Video file {metadata.file_path} does not exist")

        split_count = size_split_count(path.get_file_size(metadata.file_path), self.max_video_size,
                                       admission.split_count)
        if split_count > 1:
            segments = self.splitter.split(metadata, split_count)
            if not segments:
                raise TransientError(f"Unable to split video {candidate.source_id}")
            queue.extendleft(reversed(segments))
            self.statistics.add_remaining(len(segments) - 1)
            return Decision.PROCEED

        self.upload(metadata)
        self.state.restart_search_timeout()
        return Decision.PROCEED

    def resolve_duration(self, candidate):
        """Fill in the duration of a source video, False when it should be skipped"""
        cached = self.durations.get(candidate.source_id)
        if cached is not None:
            candidate.duration = int(cached)
            return True

        try:
            info = self.source.fetch_metadata(candidate.source_id)
        except TransientError as e:
            log.error(f"Unable to get the duration of video {candidate.source_id}: {e}")
            return False

        duration = int(info.get('duration') or 0)
        candidate.duration = duration
        source_config = self.configs['source']
        if is_recent_long_video(info, self.clock(), int(source_config['delay_download_if_longer_than']),
                                int(source_config['delayed_videos_uploaded_within'])):
            log.info(f"Skipping video {candidate.source_id} for now, it is {misc.format_duration(duration)} long "
                     f"and was uploaded recently")
            return False

        self.durations[candidate.source_id] = duration
        return True

    def wait_for_allowance(self, candidate_duration, lead_time=0):
        """
        Sleep till the allowance permits a candidate, less a lead time

        Pending publishes are checked on while waiting, a published video
        usually frees its allowance sooner than the ledger assumed.

        Raises:
            DeadlineReached: when the wait would run past the quit time
        """
        snapshot = self.accountant.recompute(candidate_duration, self.state.window)
        if snapshot.unpublished_videos_exist:
            check_until = snapshot.wait_until - lead_time
            if check_until > self.clock():
                log.info(f"Waiting on allowance restrictions due to {snapshot.binding_reason.description}, "
                         f"checking on videos waiting to be published meanwhile")
                self.poller.check_on_publishing(min(check_until, self.state.quit_time))
                snapshot = self.accountant.recompute(candidate_duration, self.state.window)

        now = int(self.clock())
        waiting_time = snapshot.wait.seconds_from(now)
        if waiting_time <= lead_time:
            return snapshot

        if self.state.ignore_allowance:
            log.warning(f"Allowance restrictions on {snapshot.binding_reason.description} ignored, "
                        f"continuing without waiting")
            return snapshot

        sleep_time = waiting_time - lead_time
        if now + sleep_time > self.state.quit_time:
            raise DeadlineReached(f"Allowance for {misc.format_duration(candidate_duration)} is not available till "
                                  f"{misc.format_timestamp(now + waiting_time)}")

        log.info(f"Waiting {misc.seconds_to_string(sleep_time)} due to {snapshot.binding_reason.description}, "
                 f"allowance available at {misc.format_timestamp(now + waiting_time)}")
        self.sleep(sleep_time)
        return snapshot

    def upload(self, metadata):
        if not metadata.title:
            raise FatalError(f"Video {metadata.source_id} has no title")
        duration = metadata.duration
        fields = publish_fields(metadata, self.configs['destination'], self.is_partner)

        self.wait_for_allowance(duration, self.wait_before_upload)
        self.api.ensure_token()
        log.info(f"Uploading {os.path.basename(metadata.file_path)}")
        try:
            posted_url = self.api.upload_file(metadata.file_path)
        except DailymotionError as e:
            raise FatalError(f"Failed to upload video {metadata.source_id}: {e}")

        self.wait_for_allowance(duration)
        self.api.ensure_token()
        log.info(f"Posting video {metadata.source_id} to the account")
        try:
            video_id = self.api.create_video(posted_url)
        except QuotaExceeded:
            self.ledger.record(self.policy.duration_allowance)
            if self.notify:
                self.notify.send(message="Upload limit exceeded, uploads are suspended for "
                                         f"{misc.seconds_to_string(self.policy.allowance_period)}")
            raise
        except (DailymotionError, TransientError) as e:
            self.ledger.record(duration)
            raise FatalError(f"Failed to post video {metadata.source_id} to the account: {e}")

        # the video counts against the allowance from here on
        self.ledger.record(duration, video_id, PublishStatus.WAITING)
        try:
            remote_duration = int(self.api.get_fields(video_id, ['duration']).get('duration') or duration)
        except MirrorError as e:
            log.warning(f"Unable to get the duration of video {video_id}, tracking the source duration: {e}")
            remote_duration = duration
        if remote_duration != duration:
            self.ledger.update_duration(video_id, remote_duration)

        log.info(f"Publishing video {video_id}")
        try:
            self.api.publish(video_id, fields)
        except MirrorError as e:
            self.published.append(metadata.source_id, video_id, duration, metadata.split_part, fields['title'])
            path.delete([metadata.file_path, metadata.info_path])
            raise FatalError(f"Failed to publish video {video_id}, run sync_video --sync-id {video_id} "
                             f"to retry: {e}")

        self.state.uploaded_count += 1
        self.statistics.record_upload(duration)
        self.published.append(metadata.source_id, video_id, duration, metadata.split_part, fields['title'])
        path.delete([metadata.file_path, metadata.info_path])
        log.info(f"Mirrored video {metadata.source_id} to {video_id}")
        return video_id

    ############################################################
    # PARTS
    ############################################################

    def on_published(self, entry):
        record = self.published.find_by_remote_id(entry.remote_id)
        if record and int(record.get('part') or 0) > 1:
            self.link_previous_part(record['sourceId'], int(record['part']), entry.remote_id)

    def link_previous_part(self, source_id, part, remote_id):
        """
        Point the previous part of a split video at this one

        Returns:
            False when the previous part already links here
        """
        # a part that failed to split was never published, link past it
        previous = None
        previous_part = part - 1
        while previous_part > 0:
            previous = self.published.find_part(source_id, previous_part)
            if previous is not None:
                break
            log.warning(f"Part {previous_part} of video {source_id} was never published")
            previous_part -= 1
        if previous is None:
            log.warning(f"No earlier part of video {source_id} to link to part {part} ({remote_id})")
            return False

        previous_id = previous['remoteId']
        info = self.api.get_fields(previous_id, ['status', 'player_next_video', 'description'])
        status = PublishStatus.parse(info.get('status'))
        if not (status.is_pending or status is PublishStatus.PUBLISHED):
            raise FatalError(f"Previous part {previous_id} has an unexpected status of {status.value!r}")
        if info.get('player_next_video') == remote_id:
            log.info(f"Previous part {previous_id} already links to {remote_id}")
            return False

        url = self.api.get_fields(remote_id, ['url']).get('url', '')
        description = f"Watch Part {part}:\n{url}\n\n{info.get('description') or ''}"
        self.api.edit_fields(previous_id, {'description': description, 'player_next_video': remote_id})
        log.info(f"Linked part {previous_part} ({previous_id}) to part {part} ({remote_id})")
        return True

    ############################################################
    # MAINTENANCE
    ############################################################

    def mark_done(self, target):
        if target == 'ALL':
            return self.source.mark_done(self.source.list_videos(), replace=True)
        if target == 'SYNC':
            return self.source.mark_done(sorted(self.published.source_ids()), replace=True)
        return self.source.mark_done([target])

    def sync_video(self, remote_id):
        """Re-publish a mirrored video with metadata freshly fetched from the source"""
        record = self.published.find_by_remote_id(remote_id)
        if record is None:
            raise FatalError(f"Video {remote_id} is not in the published record")

        self.login()
        current = self.api.get_fields(remote_id, ['id', 'status', 'title'])
        log.info(f"Syncing {remote_id} ({current.get('status')}) from YouTube video {record['sourceId']}")
        metadata = VideoMetadata(self.source.fetch_metadata(record['sourceId']))
        part = int(record.get('part') or 0)
        if part:
            fields = publish_fields(metadata, self.configs['destination'], self.is_partner,
                                    title=record['title'], next_video_id='')
        else:
            fields = publish_fields(metadata, self.configs['destination'], self.is_partner)
        self.api.publish(remote_id, fields)
        if part > 1:
            self.link_previous_part(record['sourceId'], part, remote_id)
        log.info(f"Synced video {remote_id}")

    def prune_duration_cache(self):
        pruned = 0
        for source_id in self.published.source_ids():
            if source_id in self.durations:
                del self.durations[source_id]
                pruned += 1
        if pruned:
            log.debug(f"Pruned {pruned} published video(s) from the duration cache")

    def finish(self, wait_for_publish=True):
        self.prune_duration_cache()
        if wait_for_publish and self.state is not None:
            snapshot = self.accountant.recompute(0, self.state.window)
            if snapshot.unpublished_videos_exist:
                try:
                    self.poller.check_on_publishing(self.state.quit_time)
                except TransientError as e:
                    log.error(f"Unable to check on videos waiting to be published: {e}")

        self.statistics.end_session()
        if self.statistics.uploaded > 0:
            self.statistics.print_summary()
            if self.notify:
                self.notify.send(message=self.statistics.summary())
