import logging
import time
from enum import Enum

from . import misc
from .ledger import WaitReason
from .splitter import duration_split_count

log = logging.getLogger("admission")

# the window is assumed to have opened this long before the oldest upload of the current hour
WINDOW_LEAD_TIME = 300


class Decision(Enum):
    PROCEED = 'proceed'
    SKIP = 'skip'
    ABORT_BATCH = 'abort_batch'


class UploadWindow:
    def __init__(self, start, period):
        self.start = start
        self.end = start + period

    @classmethod
    def from_snapshot(cls, snapshot, policy, now):
        """
        Work out when the current upload period began

        An upload within the last hour means a previous run is still inside its
        window. Otherwise the window opens once the oldest counted upload expires.
        """
        start = now
        if snapshot.oldest_entry_this_hour:
            start = snapshot.oldest_entry_this_hour - WINDOW_LEAD_TIME
        elif snapshot.oldest_entry_today:
            start = snapshot.oldest_entry_today + policy.allowance_period
        return cls(start, policy.allowance_period)

    def __repr__(self):
        return f"UploadWindow({misc.format_timestamp(self.start)} -> {misc.format_timestamp(self.end)})"


class SchedulerState:
    """Run-wide scheduling state shared by every admission decision of one run"""

    def __init__(self, window, quit_time, requested_count=None, target_remaining_duration=30, search_timeout=600,
                 ignore_allowance=False, clock=time.time):
        self.window = window
        self.quit_time = quit_time
        self.requested_count = requested_count
        self.target_remaining_duration = target_remaining_duration
        self.search_timeout = search_timeout
        self.ignore_allowance = ignore_allowance
        self.clock = clock
        self.uploaded_count = 0
        self.min_skip_duration = 0
        self.stop_search_at = int(clock()) + search_timeout

    def restart_search_timeout(self):
        self.stop_search_at = int(self.clock()) + self.search_timeout

    def search_timed_out(self):
        return int(self.clock()) > self.stop_search_at

    def lower_skip_watermark(self, duration):
        if not self.min_skip_duration or duration < self.min_skip_duration:
            self.min_skip_duration = duration
            log.debug(f"Videos longer than {misc.format_duration(duration)} will now be skipped without checking")


class Admission:
    def __init__(self, decision, message, split_count=0, effective_duration=0, snapshot=None):
        self.decision = decision
        self.message = message
        self.split_count = split_count
        self.effective_duration = effective_duration
        self.snapshot = snapshot

    @property
    def split_required(self):
        return self.split_count > 1

    def __repr__(self):
        return f"Admission({self.decision.name}, {self.message!r})"


class AdmissionController:
    def __init__(self, accountant, max_video_duration=0, clock=time.time):
        self.accountant = accountant
        self.max_video_duration = max_video_duration
        self.clock = clock

    def admit(self, candidate, state):
        """
        Decide whether a candidate can be uploaded in this run

        The first matching rule wins:
            1. requested upload count reached -> ABORT_BATCH
            2. upload window closed -> ABORT_BATCH
            3. longer than an already skipped video -> SKIP
            4. session duration/count budget used up -> ABORT_BATCH
            5. longer than the session budget left -> SKIP
            6. allowance frees up after the window closes -> SKIP, or ABORT_BATCH
               when no other video could do better before the next run
            7. allowance frees up after the quit time -> ABORT_BATCH
            8. otherwise -> PROCEED

        Args:
            candidate: Candidate with a known duration
            state: SchedulerState of the current run

        Returns:
            Admission
        """
        now = int(self.clock())

        if state.requested_count is not None and state.uploaded_count >= state.requested_count:
            return Admission(Decision.ABORT_BATCH,
                             f"Requested video count uploads ({state.requested_count}) reached for this session")

        if now > state.window.end:
            return Admission(Decision.ABORT_BATCH, "Upload window has ended")

        duration = candidate.duration
        if state.min_skip_duration and duration > state.min_skip_duration:
            return Admission(Decision.SKIP, f"Skipping video ID {candidate.source_id}, duration is "
                                            f"{misc.format_duration(duration)} ({duration} seconds)")

        split_count = duration_split_count(duration, self.max_video_duration)
        if split_count:
            log.warning(f"Video {candidate.source_id} is longer than the max allowed upload length, "
                        f"{split_count} splits required")
            # query limits on the max upload length so split videos are not favoured over shorter ones
            effective_duration = self.max_video_duration
        else:
            effective_duration = duration

        snapshot = self.accountant.recompute(effective_duration, state.window)

        def admission(decision, message):
            return Admission(decision, message, split_count, effective_duration, snapshot)

        if snapshot.remaining_duration_for_session <= state.target_remaining_duration \
                or snapshot.remaining_daily_videos_for_session < 1:
            return admission(Decision.ABORT_BATCH, "Reached the current window's targeted upload allowance")

        if effective_duration > snapshot.remaining_duration_for_session:
            state.lower_skip_watermark(effective_duration)
            return admission(Decision.SKIP, f"Skipping video ID {candidate.source_id}, duration is "
                                            f"{misc.format_duration(effective_duration)} ({effective_duration} seconds)"
                                            f" with {snapshot.remaining_duration_for_session} seconds left this window")

        wait = snapshot.wait
        waiting_time = wait.seconds_from(now)
        time_till_quit = state.quit_time - now
        if waiting_time > state.window.end - now:
            message = f"Cannot upload due to allowance restrictions on {wait.reason.description}"
            if state.ignore_allowance:
                log.warning(f"{message}. Option set to ignore upload allowances, continuing with upload anyway")
                return admission(Decision.PROCEED, message)
            if wait.reason is WaitReason.DURATION_LIMIT:
                # a shorter video may still fit
                state.lower_skip_watermark(effective_duration)
                return admission(Decision.SKIP, message)
            if waiting_time > time_till_quit:
                return admission(Decision.ABORT_BATCH, f"{message}, no video can be uploaded before the next run")
            return admission(Decision.SKIP, message)

        if waiting_time > time_till_quit:
            return admission(Decision.ABORT_BATCH, "Video should be picked up by next scheduled run")

        return admission(Decision.PROCEED, f"Video {candidate.source_id} can be uploaded "
                                           f"{'now' if not waiting_time else 'in ' + misc.seconds_to_string(waiting_time)}")
