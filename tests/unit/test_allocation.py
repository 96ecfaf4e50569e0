from datetime import date, time

from tablebook.services.allocation_service import (
    BlockWindow,
    Busy,
    DaySnapshot,
    GroupInfo,
    Hold,
    TableInfo,
    allocate,
    find_available_resource,
    format_hhmm,
    overlaps,
    to_minutes,
)

DAY = date(2026, 1, 6)
SEVEN_PM = 19 * 60


def snapshot(**kwargs):
    return DaySnapshot(venue_id="v1", day=DAY, **kwargs)


def four_tables():
    return [TableInfo("t2", 2), TableInfo("t4", 4), TableInfo("t6", 6), TableInfo("t8", 8)]


def test_half_open_intervals():
    assert overlaps(0, 90, 60, 120)
    assert not overlaps(0, 90, 90, 180)
    assert not overlaps(90, 180, 0, 90)


def test_minutes_helpers():
    assert to_minutes(time(19, 45)) == 1185
    assert format_hhmm(1185) == "19:45"
    assert format_hhmm(24 * 60 + 30) == "00:30"


def test_tightest_single_table():
    result = allocate(snapshot(tables=four_tables()), SEVEN_PM, 90, 3)
    assert result.ok
    assert result.resource_id == "t4"
    assert result.resource_ids == ["t4"]


def test_busy_table_is_skipped():
    snap = snapshot(tables=four_tables(), busy=[Busy("t4", SEVEN_PM - 30, SEVEN_PM + 60)])
    assert allocate(snap, SEVEN_PM, 90, 3).resource_id == "t6"


def test_touching_booking_does_not_conflict():
    snap = snapshot(tables=four_tables(), busy=[Busy("t4", SEVEN_PM - 90, SEVEN_PM)])
    assert allocate(snap, SEVEN_PM, 90, 3).resource_id == "t4"


def test_group_fallback_when_no_single_table_fits():
    snap = snapshot(
        tables=[TableInfo("a", 6), TableInfo("b", 6)],
        groups=[
            GroupInfo("big", ("a", "b"), min_party_size=7, max_party_size=14),
            GroupInfo("snug", ("a", "b"), min_party_size=7, max_party_size=12),
        ],
    )
    result = allocate(snap, SEVEN_PM, 120, 10)
    assert result.ok
    assert result.resource_id is None
    assert result.group_id == "snug"
    assert result.resource_ids == ["a", "b"]


def test_group_rejected_when_a_member_is_occupied():
    snap = snapshot(
        tables=[TableInfo("a", 6), TableInfo("b", 6)],
        groups=[GroupInfo("ab", ("a", "b"), min_party_size=7, max_party_size=12)],
        busy=[Busy("b", SEVEN_PM + 60, SEVEN_PM + 180)],
    )
    result = allocate(snap, SEVEN_PM, 120, 10)
    assert not result.ok
    assert result.reason


def test_group_outside_party_range_is_ignored():
    snap = snapshot(
        tables=[TableInfo("a", 6), TableInfo("b", 6)],
        groups=[GroupInfo("ab", ("a", "b"), min_party_size=11, max_party_size=12)],
    )
    assert not allocate(snap, SEVEN_PM, 120, 10).ok


def test_group_with_unknown_member_is_ignored():
    snap = snapshot(
        tables=[TableInfo("a", 6)],
        groups=[GroupInfo("ab", ("a", "gone"), min_party_size=7, max_party_size=12)],
    )
    assert not allocate(snap, SEVEN_PM, 120, 10).ok


def test_venue_wide_block_closes_everything():
    snap = snapshot(tables=four_tables(), blocks=[BlockWindow(None, 18 * 60, 22 * 60)])
    result = allocate(snap, SEVEN_PM, 90, 2)
    assert not result.ok


def test_resource_block_only_removes_listed_tables():
    snap = snapshot(tables=four_tables(), blocks=[BlockWindow(frozenset({"t2", "t4"}), 18 * 60, 22 * 60)])
    assert allocate(snap, SEVEN_PM, 90, 2).resource_id == "t6"


def test_block_outside_request_window_is_ignored():
    snap = snapshot(tables=four_tables(), blocks=[BlockWindow(None, 12 * 60, 15 * 60)])
    assert allocate(snap, SEVEN_PM, 90, 2).resource_id == "t2"


def test_holds_take_tables_first():
    snap = snapshot(
        tables=[TableInfo("t2", 2), TableInfo("t4", 4)],
        holds=[Hold(party_size=2, start=SEVEN_PM, end=SEVEN_PM + 90)],
    )
    assert allocate(snap, SEVEN_PM, 90, 2).resource_id == "t4"


def test_late_seating_runs_past_midnight():
    snap = snapshot(tables=[TableInfo("t2", 2)], busy=[Busy("t2", 24 * 60 + 30, 24 * 60 + 90)])
    assert not allocate(snap, 23 * 60, 120, 2).ok
    assert allocate(snap, 22 * 60, 120, 2).ok


def test_find_available_resource_reads_the_store(make):
    venue = make.venue()
    small = make.table(venue, 2)
    large = make.table(venue, 6)
    make.table(venue, 4, bookable=False)
    make.reservation(venue, small, day=DAY, start=time(19, 0))

    result = find_available_resource(
        make.db, venue_id=venue.id, day=DAY, start_time=time(19, 30), duration_minutes=90, party_size=2
    )
    assert result.resource_id == large.id


def test_previous_evening_overrun_blocks_early_morning(make):
    venue = make.venue()
    table = make.table(venue, 2)
    make.reservation(venue, table, day=date(2026, 1, 5), start=time(23, 30), duration=120)

    result = find_available_resource(
        make.db, venue_id=venue.id, day=DAY, start_time=time(0, 30), duration_minutes=60, party_size=2
    )
    assert not result.ok
