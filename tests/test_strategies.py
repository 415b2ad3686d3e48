"""Tests for the cursor and per-date walks."""
from datetime import date, timedelta

from limitless_export.strategies import CursorStrategy, PerDateStrategy, WalkState

from conftest import FakeRemote, make_record


def walk(strategy, limit=100):
    state = strategy.initial_state()
    batches = []
    for _ in range(limit):
        batch = strategy.next_batch(state)
        batches.append(batch)
        state = batch.new_state
        if batch.done:
            break
    return batches


def daily_records(first: date, days: int, per_day: int = 1):
    recs = []
    for d in range(days):
        day = first + timedelta(days=d)
        for i in range(per_day):
            recs.append(make_record(f"{day}-{i}", f"{day}T{8 + i:02d}:00:00Z"))
    return recs


class TestCursorStrategy:
    def test_pages_until_short_page(self):
        remote = FakeRemote(daily_records(date(2024, 3, 1), 5, per_day=5))
        batches = walk(CursorStrategy(remote, lower_bound=date(2024, 2, 1)))

        assert [len(b.records) for b in batches] == [10, 10, 5]
        assert remote.cursors == [None, "c10", "c20"]
        assert all(p.direction == "desc" for p in remote.calls)
        assert batches[-1].notes == ["short page"]

    def test_stops_at_lower_bound(self):
        remote = FakeRemote(daily_records(date(2024, 3, 1), 10, per_day=2))
        batches = walk(CursorStrategy(remote, lower_bound=date(2024, 3, 6)))

        # Page 1 covers 03-10..03-06, whose oldest date is the bound.
        assert len(batches) == 1
        assert batches[0].done
        assert batches[0].new_state == WalkState(cursor="c10")
        assert batches[0].notes == ["reached 2024-03-06"]

    def test_exhausted_cursor_ends_walk(self):
        remote = FakeRemote(daily_records(date(2024, 3, 1), 10))
        batches = walk(CursorStrategy(remote, lower_bound=date(2024, 1, 1)))
        assert len(batches) == 1
        assert batches[0].notes == ["no next cursor"]

    def test_empty_remote(self):
        batches = walk(CursorStrategy(FakeRemote(), lower_bound=date(2024, 1, 1)))
        assert len(batches) == 1
        assert batches[0].records == []
        assert batches[0].done

    def test_starts_from_saved_cursor(self):
        remote = FakeRemote(daily_records(date(2024, 3, 1), 5, per_day=5))
        strategy = CursorStrategy(remote, lower_bound=date(2024, 2, 1), start_cursor="c20")
        batches = walk(strategy)
        assert remote.cursors == ["c20"]
        assert len(batches[0].records) == 5

    def test_describe(self):
        strategy = CursorStrategy(FakeRemote(), lower_bound=date(2024, 1, 1))
        assert strategy.describe(strategy.initial_state()) == "cursor <newest>"


class TestPerDateStrategy:
    def test_walks_dates_downward_to_lower_bound(self):
        remote = FakeRemote([make_record("a", "2024-03-08T10:00:00Z")])
        strategy = PerDateStrategy(remote, upper=date(2024, 3, 10), lower_bound=date(2024, 3, 7))
        batches = walk(strategy)

        assert remote.dates == [date(2024, 3, 10), date(2024, 3, 9), date(2024, 3, 8), date(2024, 3, 7)]
        assert [b.day_empty for b in batches] == [True, True, False, True]
        assert batches[-1].done

    def test_consecutive_empty_days_end_walk(self):
        remote = FakeRemote([make_record("a", "2024-03-08T10:00:00Z")])
        strategy = PerDateStrategy(remote, upper=date(2024, 3, 10), empty_day_threshold=3)
        batches = walk(strategy)

        # 03-10, 03-09 empty; 03-08 resets; 03-07..03-05 reach the threshold.
        assert remote.dates[-1] == date(2024, 3, 5)
        assert len(batches) == 6
        assert batches[-1].notes == ["3 consecutive empty days"]

    def test_gaps_above_arm_point_do_not_count(self):
        remote = FakeRemote([make_record("old", "2024-02-01T10:00:00Z")])
        strategy = PerDateStrategy(remote, upper=date(2024, 2, 10), arm_below=date(2024, 2, 1),
                                   empty_day_threshold=2)
        walk(strategy)

        # Nine empty days above 02-01 are a known gap; two below it end the walk.
        assert remote.dates[-1] == date(2024, 1, 30)
        assert date(2024, 2, 1) in remote.dates

    def test_follows_cursor_within_a_date(self):
        remote = FakeRemote(daily_records(date(2024, 3, 10), 1, per_day=12))
        strategy = PerDateStrategy(remote, upper=date(2024, 3, 10), lower_bound=date(2024, 3, 10))
        batches = walk(strategy)

        assert remote.cursors == [None, "c10"]
        assert remote.dates == [date(2024, 3, 10)] * 2
        assert [len(b.records) for b in batches] == [10, 2]
        assert not any(b.day_empty for b in batches)

    def test_full_last_page_without_cursor_finishes_date(self):
        remote = FakeRemote(daily_records(date(2024, 3, 10), 1, per_day=10))
        strategy = PerDateStrategy(remote, upper=date(2024, 3, 10), lower_bound=date(2024, 3, 9))
        walk(strategy)
        assert remote.dates == [date(2024, 3, 10), date(2024, 3, 9)]

    def test_known_empty_old_dates_are_skipped(self):
        remote = FakeRemote()
        strategy = PerDateStrategy(remote, upper=date(2024, 3, 10), lower_bound=date(2024, 3, 6),
                                   known_empty={date(2024, 3, 9), date(2024, 3, 7)}, recheck_days=2)
        batches = walk(strategy)

        # 03-09 is inside the recheck window, 03-07 is not.
        assert remote.dates == [date(2024, 3, 10), date(2024, 3, 9), date(2024, 3, 8), date(2024, 3, 6)]
        skipped = [b for b in batches if not b.requested]
        assert [b.day for b in skipped] == [date(2024, 3, 7)]
        assert skipped[0].day_empty

    def test_walk_state_carries_only_position(self):
        remote = FakeRemote(daily_records(date(2024, 3, 10), 1, per_day=12))
        strategy = PerDateStrategy(remote, upper=date(2024, 3, 10), lower_bound=date(2024, 3, 8))
        batches = walk(strategy)

        assert [b.new_state for b in batches] == [
            WalkState(cursor="c10", day=date(2024, 3, 10)),
            WalkState(day=date(2024, 3, 9)),
            WalkState(day=date(2024, 3, 8), empty_streak=1),
            WalkState(day=date(2024, 3, 7), empty_streak=2),
        ]

    def test_resume_day(self):
        remote = FakeRemote()
        strategy = PerDateStrategy(remote, upper=date(2024, 3, 10), lower_bound=date(2024, 3, 4),
                                   start_day=date(2024, 3, 5))
        walk(strategy)
        assert remote.dates == [date(2024, 3, 5), date(2024, 3, 4)]
