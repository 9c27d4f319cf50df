"""
Allowance ledger for dmmirror
Keeps the durable log of every upload attempt and recomputes the remaining
upload allowances (duration per day, videos per day, videos per hour) from it.
"""
import logging
import os
import shutil
import time
from enum import Enum

from . import misc

log = logging.getLogger("ledger")


class PublishStatus(Enum):
    NONE = ''
    WAITING = 'waiting'
    PROCESSING = 'processing'
    READY = 'ready'
    PUBLISHED = 'published'
    REJECTED = 'rejected'
    DELETED = 'deleted'
    ENCODING_ERROR = 'encoding_error'
    UNKNOWN = 'unknown'

    @classmethod
    def parse(cls, value):
        if not value:
            return cls.NONE
        try:
            return cls(value)
        except ValueError:
            log.warning(f"Unrecognised publish status {value!r}, treating as unknown")
            return cls.UNKNOWN

    @property
    def is_pending(self):
        return self in (PublishStatus.WAITING, PublishStatus.PROCESSING, PublishStatus.READY)


class WaitReason(Enum):
    MINIMUM_SPACING = 0
    HOURLY_LIMIT = 1
    DURATION_LIMIT = 2
    DAILY_LIMIT = 3

    @property
    def description(self):
        return {
            WaitReason.MINIMUM_SPACING: "the minimum wait time between uploads",
            WaitReason.HOURLY_LIMIT: "the hourly upload limit reached",
            WaitReason.DURATION_LIMIT: "the remaining duration allowance less than needed",
            WaitReason.DAILY_LIMIT: "the max daily videos limit reached",
        }[self]


class LedgerEntry:
    """One upload attempt. timestamp is in destination clock seconds"""

    def __init__(self, timestamp, duration, remote_id='', status=PublishStatus.NONE):
        self.timestamp = int(timestamp)
        self.duration = int(duration)
        self.remote_id = remote_id or ''
        self.status = status

    @classmethod
    def from_line(cls, line):
        parts = line.split()
        if len(parts) < 2:
            raise ValueError(f"expected at least 2 fields, got {len(parts)}")
        timestamp, duration = int(parts[0]), int(parts[1])
        remote_id = parts[2] if len(parts) > 2 else ''
        status = PublishStatus.parse(parts[3] if len(parts) > 3 else '')
        return cls(timestamp, duration, remote_id, status)

    def to_line(self):
        fields = [str(self.timestamp), str(self.duration)]
        if self.remote_id:
            fields.append(self.remote_id)
            if self.status is not PublishStatus.NONE:
                fields.append(self.status.value)
        return ' '.join(fields)

    @property
    def awaiting_publish(self):
        return bool(self.remote_id) and self.status.is_pending

    def __eq__(self, other):
        if not isinstance(other, LedgerEntry):
            return NotImplemented
        return self.to_line() == other.to_line()

    def __repr__(self):
        return f"LedgerEntry({self.to_line()!r})"


class AllowanceLedger:
    """Sorted, whitespace separated ledger file. Every write is a full rewrite then rename"""

    def __init__(self, ledger_path, clock=time.time):
        self.ledger_path = ledger_path
        self.clock = clock
        # destination clock minus local clock, measured at login
        self.clock_offset = 0

    def exists(self):
        return os.path.exists(self.ledger_path)

    def server_time(self):
        return int(self.clock()) + self.clock_offset

    def to_local(self, timestamp):
        return timestamp - self.clock_offset

    def load(self):
        entries = []
        if not self.exists():
            return entries

        with open(self.ledger_path, 'r') as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    entries.append(LedgerEntry.from_line(line))
                except ValueError as e:
                    log.warning(f"Skipping malformed ledger row {line_number} ({line.strip()!r}): {e}")

        entries.sort(key=lambda entry: entry.timestamp)
        return entries

    def save(self, entries):
        entries = sorted(entries, key=lambda entry: entry.timestamp)
        tmp_path = f"{self.ledger_path}.tmp"
        with open(tmp_path, 'w') as f:
            for entry in entries:
                f.write(entry.to_line() + '\n')
        os.replace(tmp_path, self.ledger_path)
        log.debug(f"Wrote {len(entries)} entries to {self.ledger_path}")

    def record(self, duration, remote_id='', status=PublishStatus.NONE):
        """Append an upload at the current destination time"""
        entry = LedgerEntry(self.server_time(), duration, remote_id, status)
        entries = self.load()
        entries.append(entry)
        self.save(entries)
        log.info(f"Tracked {misc.format_duration(duration)} ({duration} seconds) against the upload allowance"
                 f"{f' for video {remote_id}' if remote_id else ''}")
        return entry

    def update_duration(self, remote_id, duration):
        entries = self.load()
        for entry in entries:
            if entry.remote_id == remote_id:
                entry.duration = duration
        self.save(entries)

    def rebuild(self, entries):
        """Replace the ledger with entries queried from the destination, keeping a backup"""
        if self.exists():
            shutil.copyfile(self.ledger_path, f"{self.ledger_path}.bku")
        self.save(entries)
        log.info(f"Rebuilt allowance ledger with {len(entries)} upload(s) from the destination account")


class QuotaPolicy:
    def __init__(self, duration_allowance=7200, allowance_period=86400, videos_per_day=10, videos_per_hour=4,
                 hour_period=3600, min_spacing=30, expiry_tolerance=30):
        self.duration_allowance = duration_allowance
        self.allowance_period = allowance_period
        self.videos_per_day = videos_per_day
        # 0 disables the hourly count cap
        self.videos_per_hour = videos_per_hour
        self.hour_period = hour_period
        self.min_spacing = min_spacing
        self.expiry_tolerance = expiry_tolerance

    @classmethod
    def from_config(cls, quota_config):
        keys = ('duration_allowance', 'allowance_period', 'videos_per_day', 'videos_per_hour', 'hour_period',
                'min_spacing', 'expiry_tolerance')
        return cls(**{key: int(quota_config[key]) for key in keys if key in quota_config})

    @property
    def hourly_limit_enabled(self):
        return self.videos_per_hour > 0


class Wait:
    def __init__(self, until, reason, tolerance=0):
        self.until = until
        self.reason = reason
        self.tolerance = tolerance

    def seconds_from(self, now):
        """Seconds to sleep from now, including the expiry tolerance when a wait is required"""
        if self.until <= now:
            return 0
        return self.until + self.tolerance - now

    def __repr__(self):
        return f"Wait(until={self.until}, reason={self.reason.name})"


class AllowanceSnapshot:
    """Allowances derived from the ledger at one instant. All times are local clock seconds"""

    def __init__(self, policy, candidate_duration, now):
        self.candidate_duration = candidate_duration
        self.now = now
        self.remaining_duration = policy.duration_allowance
        self.remaining_daily_videos = policy.videos_per_day
        self.remaining_hourly_videos = policy.videos_per_hour if policy.hourly_limit_enabled else None
        self.remaining_duration_for_session = policy.duration_allowance
        self.remaining_daily_videos_for_session = policy.videos_per_day
        self.oldest_entry_today = 0
        self.oldest_entry_this_hour = 0
        self.latest_entry_time = 0
        self.duration_blocking_entry_time = None
        self.unpublished_videos_exist = False
        self.in_window = []
        self.wait_until = now
        self.binding_reason = WaitReason.MINIMUM_SPACING
        self.wait = None

    @property
    def max_wait_until(self):
        return self.wait_until

    def log_summary(self):
        log.info(f"Checking upload allowance as of        {misc.format_timestamp(self.now)}")
        log.info(f"Current video duration:                {misc.format_duration(self.candidate_duration)} "
                 f"({self.candidate_duration} seconds)")
        log.info(f"Remaining upload duration:             {misc.format_duration(self.remaining_duration)} "
                 f"({self.remaining_duration} seconds)")
        if self.remaining_hourly_videos is not None:
            log.info(f"Remaining upload videos this hour:     {self.remaining_hourly_videos}")
        log.info(f"Remaining daily uploads:               {self.remaining_daily_videos}")
        log.info(f"Remaining duration (current window):   {misc.format_duration(self.remaining_duration_for_session)} "
                 f"({self.remaining_duration_for_session} seconds)")


def resolve_wait(snapshot, policy, now):
    """
    Earliest instant the candidate of this snapshot may be submitted

    Each quota gives an independent lower bound and the most restrictive wins.
    Bounds are listed in priority order so ties keep the earlier reason.

    Returns:
        Wait whose until is never before now
    """
    bounds = []
    if snapshot.remaining_daily_videos < 1:
        bounds.append((snapshot.oldest_entry_today + policy.allowance_period, WaitReason.DAILY_LIMIT))
    if policy.hourly_limit_enabled and snapshot.remaining_hourly_videos < 1:
        bounds.append((snapshot.oldest_entry_this_hour + policy.hour_period, WaitReason.HOURLY_LIMIT))
    if snapshot.remaining_duration < snapshot.candidate_duration:
        if snapshot.duration_blocking_entry_time is None:
            # candidate is longer than the whole allowance
            bounds.append((now + policy.allowance_period, WaitReason.DURATION_LIMIT))
        else:
            bounds.append((snapshot.duration_blocking_entry_time + policy.allowance_period,
                           WaitReason.DURATION_LIMIT))
    bounds.append((snapshot.latest_entry_time + policy.min_spacing, WaitReason.MINIMUM_SPACING))

    until, reason = bounds[0]
    for bound, bound_reason in bounds[1:]:
        if bound > until:
            until, reason = bound, bound_reason

    return Wait(max(until, now), reason, policy.expiry_tolerance)


class QuotaAccountant:
    def __init__(self, ledger, policy, clock=time.time):
        self.ledger = ledger
        self.policy = policy
        self.clock = clock

    def recompute(self, candidate_duration=0, window=None):
        """
        Recompute the allowances for a candidate of the given duration

        Entries that fell out of the rolling period are dropped and the ledger is
        rewritten with the rest.

        Args:
            candidate_duration: Seconds the next upload would use
            window: Current UploadWindow, or None to use the rolling period for the session

        Returns:
            AllowanceSnapshot
        """
        now = int(self.clock())
        policy = self.policy
        snapshot = AllowanceSnapshot(policy, candidate_duration, now)

        duration_window_start = now - policy.allowance_period
        hour_window_start = now - policy.hour_period
        session_window_start = window.end - policy.allowance_period if window else duration_window_start

        used_duration = 0
        used_session_duration = 0
        daily_count = 0
        session_count = 0
        hourly_count = 0
        for entry in self.ledger.load():
            local_time = self.ledger.to_local(entry.timestamp)
            if local_time < duration_window_start:
                continue

            snapshot.latest_entry_time = local_time
            snapshot.in_window.append(entry)
            used_duration += entry.duration
            daily_count += 1
            if not snapshot.oldest_entry_today:
                snapshot.oldest_entry_today = local_time
            if entry.awaiting_publish:
                snapshot.unpublished_videos_exist = True

            if local_time >= session_window_start:
                used_session_duration += entry.duration
                session_count += 1

            if local_time >= hour_window_start:
                hourly_count += 1
                if not snapshot.oldest_entry_this_hour:
                    snapshot.oldest_entry_this_hour = local_time

        unclamped_remaining = policy.duration_allowance - used_duration
        snapshot.remaining_duration = max(0, unclamped_remaining)
        snapshot.remaining_daily_videos = max(0, policy.videos_per_day - daily_count)
        snapshot.remaining_duration_for_session = max(0, policy.duration_allowance - used_session_duration)
        snapshot.remaining_daily_videos_for_session = max(0, policy.videos_per_day - session_count)
        if policy.hourly_limit_enabled:
            snapshot.remaining_hourly_videos = max(0, policy.videos_per_hour - hourly_count)

        # earliest entry whose expiry frees enough duration for the candidate
        if candidate_duration > snapshot.remaining_duration:
            freed = unclamped_remaining
            for entry in snapshot.in_window:
                freed += entry.duration
                snapshot.duration_blocking_entry_time = self.ledger.to_local(entry.timestamp)
                if freed >= candidate_duration:
                    break

        self.ledger.save(snapshot.in_window)

        wait = resolve_wait(snapshot, policy, now)
        snapshot.wait = wait
        snapshot.wait_until = wait.until
        snapshot.binding_reason = wait.reason
        return snapshot
