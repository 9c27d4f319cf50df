import os

import pytest

from utils.admission import UploadWindow
from utils.ledger import (LedgerEntry, PublishStatus, QuotaAccountant, QuotaPolicy, Wait, WaitReason,
                          resolve_wait)

from conftest import NOW

HOUR = 3600
DAY = 86400


def write_entries(ledger, *entries):
    ledger.save([LedgerEntry(*entry) for entry in entries])


def test_entry_lines():
    assert LedgerEntry(100, 60).to_line() == '100 60'
    assert LedgerEntry(100, 60, 'x1', PublishStatus.WAITING).to_line() == '100 60 x1 waiting'

    entry = LedgerEntry.from_line('100 60 x1 published\n')
    assert entry.timestamp == 100
    assert entry.duration == 60
    assert entry.remote_id == 'x1'
    assert entry.status is PublishStatus.PUBLISHED


def test_entry_rejects_bad_lines():
    with pytest.raises(ValueError):
        LedgerEntry.from_line('100')
    with pytest.raises(ValueError):
        LedgerEntry.from_line('abc 60')


def test_unknown_status_is_kept_as_unknown():
    assert LedgerEntry.from_line('100 60 x1 somethingnew').status is PublishStatus.UNKNOWN


def test_load_sorts_and_skips_malformed_rows(ledger):
    with open(ledger.ledger_path, 'w') as f:
        f.write('300 30\n')
        f.write('garbage\n')
        f.write('\n')
        f.write('100 10 x1 waiting\n')
        f.write('200 notanumber\n')

    entries = ledger.load()

    assert [entry.timestamp for entry in entries] == [100, 300]


def test_record_uses_destination_clock(ledger):
    ledger.clock_offset = 100

    entry = ledger.record(600, 'x1', PublishStatus.WAITING)

    assert entry.timestamp == NOW + 100
    assert ledger.load() == [entry]


def test_rebuild_keeps_backup(ledger):
    write_entries(ledger, (NOW - 10, 60))

    ledger.rebuild([LedgerEntry(NOW - 5, 30, 'x2')])

    assert os.path.exists(f"{ledger.ledger_path}.bku")
    assert [entry.remote_id for entry in ledger.load()] == ['x2']


def test_remaining_duration_is_allowance_minus_entries(ledger, accountant):
    write_entries(ledger, (NOW - 10 * HOUR, 1000), (NOW - 5 * HOUR, 2000))

    snapshot = accountant.recompute()

    assert snapshot.remaining_duration == 7200 - 3000
    assert snapshot.remaining_daily_videos == 8
    assert snapshot.remaining_hourly_videos == 4


def test_expired_entries_are_dropped_and_compacted(ledger, accountant):
    write_entries(ledger, (NOW - DAY - 1, 5000), (NOW - HOUR * 2, 1000))

    snapshot = accountant.recompute()

    assert snapshot.remaining_duration == 6200
    assert [entry.duration for entry in ledger.load()] == [1000]


def test_recompute_is_idempotent(ledger, accountant):
    write_entries(ledger, (NOW - DAY - 100, 500), (NOW - 3 * HOUR, 1000), (NOW - 100, 200, 'x1', PublishStatus.WAITING))

    first = accountant.recompute(600)
    with open(ledger.ledger_path) as f:
        first_contents = f.read()
    second = accountant.recompute(600)
    with open(ledger.ledger_path) as f:
        second_contents = f.read()

    assert first_contents == second_contents
    assert first.remaining_duration == second.remaining_duration
    assert first.wait_until == second.wait_until
    assert first.binding_reason is second.binding_reason


def test_full_allowance_used_23_hours_ago_frees_in_an_hour(ledger, accountant):
    write_entries(ledger, (NOW - 23 * HOUR, 7200))

    snapshot = accountant.recompute(3600)

    assert snapshot.remaining_duration == 0
    assert snapshot.wait_until == NOW + HOUR
    assert snapshot.binding_reason is WaitReason.DURATION_LIMIT
    assert snapshot.wait.seconds_from(NOW) == HOUR + 30


def test_blocking_entry_is_the_earliest_that_frees_enough(ledger, accountant):
    write_entries(ledger, (NOW - 20 * HOUR, 3000), (NOW - 10 * HOUR, 3000))

    assert accountant.recompute(3000).wait_until == NOW + 4 * HOUR
    assert accountant.recompute(5000).wait_until == NOW + 14 * HOUR


def test_candidate_longer_than_allowance_waits_a_full_period(accountant):
    snapshot = accountant.recompute(8000)

    assert snapshot.wait_until == NOW + DAY
    assert snapshot.binding_reason is WaitReason.DURATION_LIMIT


def test_daily_cap(ledger, accountant):
    write_entries(ledger, *[(NOW - (20 - i) * HOUR, 60) for i in range(10)])

    snapshot = accountant.recompute(60)

    assert snapshot.remaining_daily_videos == 0
    assert snapshot.wait_until == NOW + 4 * HOUR
    assert snapshot.binding_reason is WaitReason.DAILY_LIMIT


def test_hourly_cap(ledger, accountant):
    write_entries(ledger, (NOW - 3000, 60), (NOW - 2000, 60), (NOW - 1000, 60), (NOW - 100, 60))

    snapshot = accountant.recompute(60)

    assert snapshot.remaining_hourly_videos == 0
    assert snapshot.oldest_entry_this_hour == NOW - 3000
    assert snapshot.wait_until == NOW + 600
    assert snapshot.binding_reason is WaitReason.HOURLY_LIMIT


def test_hourly_cap_can_be_disabled(ledger, clock):
    accountant = QuotaAccountant(ledger, QuotaPolicy(videos_per_hour=0), clock=clock)
    write_entries(ledger, *[(NOW - 3000 + i * 500, 60) for i in range(5)])

    snapshot = accountant.recompute(60)

    assert snapshot.remaining_hourly_videos is None
    assert snapshot.binding_reason is WaitReason.MINIMUM_SPACING
    assert snapshot.wait_until == NOW


def test_minimum_spacing(ledger, accountant):
    write_entries(ledger, (NOW - 10, 60))

    snapshot = accountant.recompute(60)

    assert snapshot.wait_until == NOW + 20
    assert snapshot.binding_reason is WaitReason.MINIMUM_SPACING


def test_empty_ledger_allows_upload_now(accountant):
    snapshot = accountant.recompute(600)

    assert snapshot.wait_until == NOW
    assert snapshot.wait.seconds_from(NOW) == 0
    assert snapshot.remaining_duration == 7200


def test_clock_offset_is_removed_from_entries(ledger, accountant):
    ledger.clock_offset = 500
    write_entries(ledger, (NOW + 500 - 10, 60))

    snapshot = accountant.recompute(60)

    assert snapshot.latest_entry_time == NOW - 10
    assert snapshot.wait_until == NOW + 20


def test_session_only_counts_entries_in_the_window(ledger, accountant):
    write_entries(ledger, (NOW - 20 * HOUR, 1000), (NOW - 2 * HOUR, 500))
    window = UploadWindow(NOW - 14 * HOUR, DAY)

    snapshot = accountant.recompute(60, window)

    assert snapshot.remaining_duration == 5700
    assert snapshot.remaining_duration_for_session == 6700
    assert snapshot.remaining_daily_videos_for_session == 9


def test_unpublished_videos_are_flagged(ledger, accountant):
    write_entries(ledger, (NOW - HOUR * 2, 60, 'x1', PublishStatus.PUBLISHED))
    assert not accountant.recompute().unpublished_videos_exist

    write_entries(ledger, (NOW - HOUR * 2, 60, 'x1', PublishStatus.PROCESSING))
    assert accountant.recompute().unpublished_videos_exist


def test_resolver_keeps_the_most_restrictive_bound(accountant, policy):
    snapshot = accountant.recompute(60)
    snapshot.remaining_daily_videos = 0
    snapshot.oldest_entry_today = NOW - 20 * HOUR
    snapshot.remaining_hourly_videos = 0
    snapshot.oldest_entry_this_hour = NOW - 1000

    wait = resolve_wait(snapshot, policy, NOW)

    assert wait.until == NOW + 4 * HOUR
    assert wait.reason is WaitReason.DAILY_LIMIT


def test_resolver_ties_keep_the_higher_priority_reason(accountant, policy):
    snapshot = accountant.recompute(60)
    snapshot.remaining_daily_videos = 0
    snapshot.oldest_entry_today = NOW - DAY + 600
    snapshot.remaining_hourly_videos = 0
    snapshot.oldest_entry_this_hour = NOW - 3000

    wait = resolve_wait(snapshot, policy, NOW)

    assert wait.until == NOW + 600
    assert wait.reason is WaitReason.DAILY_LIMIT


def test_wait_is_never_before_now():
    assert Wait(NOW - 100, WaitReason.MINIMUM_SPACING, 30).seconds_from(NOW) == 0
    assert Wait(NOW + 100, WaitReason.MINIMUM_SPACING, 30).seconds_from(NOW) == 130


def test_half_allowance_used_23_hours_ago(ledger, accountant):
    write_entries(ledger, (NOW - 23 * HOUR, 3600))

    snapshot = accountant.recompute(5000)

    assert snapshot.remaining_duration == 3600
    assert snapshot.binding_reason is WaitReason.DURATION_LIMIT
    assert snapshot.wait_until == NOW - 23 * HOUR + DAY
    assert snapshot.wait.seconds_from(NOW) > 0


def test_wait_does_not_grow_on_repeated_calls(ledger, accountant, clock):
    write_entries(ledger, (NOW - 20 * HOUR, 5000), (NOW - 10, 600))

    first = accountant.recompute(3000)
    clock.now += 5
    second = accountant.recompute(3000)

    assert second.wait_until <= first.wait_until
    assert second.wait.seconds_from(clock.now) <= first.wait.seconds_from(NOW)


def test_remaining_plus_in_window_durations_is_the_allowance(ledger, accountant):
    write_entries(ledger, (NOW - DAY - 5, 900), (NOW - 12 * HOUR, 1200), (NOW - HOUR, 300), (NOW - 60, 450))

    snapshot = accountant.recompute()

    assert snapshot.remaining_duration + sum(entry.duration for entry in snapshot.in_window) == 7200


def test_expired_entries_do_not_count_as_latest_upload(ledger, accountant):
    write_entries(ledger, (NOW - DAY - 600, 300), (NOW - DAY - 60, 300))

    first = accountant.recompute(60)
    second = accountant.recompute(60)

    assert first.latest_entry_time == second.latest_entry_time == 0
    assert first.wait_until == second.wait_until == NOW


def test_update_duration(ledger):
    write_entries(ledger, (NOW - 100, 600, 'x1', PublishStatus.WAITING), (NOW - 50, 60, 'x2', PublishStatus.WAITING))

    ledger.update_duration('x1', 598)

    assert [entry.duration for entry in ledger.load()] == [598, 60]
