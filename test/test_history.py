"""
Tests for the first-call history cache.
"""

from datetime import datetime, timedelta, timezone

import pytest

from hospital_queue.calls.history import FirstCallHistory

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def history() -> FirstCallHistory:
    return FirstCallHistory(retention=timedelta(minutes=5), max_entries=3)


class TestFirstCallHistory:
    def test_records_and_returns_timestamp(self, history: FirstCallHistory) -> None:
        history.record("t1", T0)

        assert history.last_called("t1", T0 + timedelta(minutes=1)) == T0
        assert "t1" in history
        assert len(history) == 1

    def test_expired_entry_is_invisible(self, history: FirstCallHistory) -> None:
        history.record("t1", T0)

        assert history.last_called("t1", T0 + timedelta(minutes=5, seconds=1)) is None

    def test_called_within_window(self, history: FirstCallHistory) -> None:
        history.record("t1", T0)

        assert history.called_within("t1", timedelta(minutes=2), T0 + timedelta(seconds=119))
        assert not history.called_within("t1", timedelta(minutes=2), T0 + timedelta(seconds=120))
        assert not history.called_within("unknown", timedelta(minutes=2), T0)

    def test_evict_expired_removes_only_old_entries(self, history: FirstCallHistory) -> None:
        history.record("old", T0)
        history.record("new", T0 + timedelta(minutes=4))

        evicted = history.evict_expired(T0 + timedelta(minutes=6))

        assert evicted == 1
        assert "old" not in history
        assert "new" in history

    def test_bounded_size_drops_oldest(self, history: FirstCallHistory) -> None:
        for i in range(4):
            history.record(f"t{i}", T0 + timedelta(seconds=i))

        assert len(history) == 3
        assert "t0" not in history
        assert "t3" in history

    def test_rerecord_moves_entry_to_newest(self, history: FirstCallHistory) -> None:
        history.record("t1", T0)
        history.record("t2", T0 + timedelta(seconds=1))
        history.record("t1", T0 + timedelta(seconds=2))
        history.record("t3", T0 + timedelta(seconds=3))
        history.record("t4", T0 + timedelta(seconds=4))

        assert "t2" not in history
        assert history.last_called("t1", T0 + timedelta(seconds=5)) == T0 + timedelta(seconds=2)

    def test_clear_returns_count(self, history: FirstCallHistory) -> None:
        history.record("t1", T0)
        history.record("t2", T0)

        assert history.clear() == 2
        assert len(history) == 0

    def test_rejects_zero_capacity(self) -> None:
        with pytest.raises(ValueError):
            FirstCallHistory(retention=timedelta(minutes=5), max_entries=0)
