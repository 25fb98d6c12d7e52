"""Tests for the client state store and admission controller.

These tests verify:
1. Minimum-interval admission with ceiling retry-after
2. Per-client isolation of rate timers
3. Bounded FIFO history
4. Sweep staleness rules
5. Thread safety under concurrent admission
"""

import asyncio
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

# Import the module under test
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from thought_relay.admission import AdmissionController
from thought_relay.state import ClientStateStore, run_sweeper


@pytest.fixture
def store():
    return ClientStateStore(min_interval=3.0)


@pytest.fixture
def admission(store):
    return AdmissionController(store)


class TestAdmissionController:
    """Tests for AdmissionController.check_and_record()."""

    def test_first_request_allowed(self, admission):
        decision = admission.check_and_record("1.2.3.4", now=100.0)

        assert decision.allowed is True
        assert decision.retry_after == 0

    def test_second_request_within_interval_denied(self, admission):
        """Retry-after is the remaining wait rounded up to whole seconds."""
        admission.check_and_record("1.2.3.4", now=100.0)

        decision = admission.check_and_record("1.2.3.4", now=101.2)

        assert decision.allowed is False
        assert decision.retry_after == 2

    def test_retry_after_rounds_up(self, admission):
        admission.check_and_record("1.2.3.4", now=100.0)

        assert admission.check_and_record("1.2.3.4", now=100.5).retry_after == 3
        assert admission.check_and_record("1.2.3.4", now=102.9).retry_after == 1

    def test_request_after_interval_allowed(self, admission):
        admission.check_and_record("1.2.3.4", now=100.0)

        assert admission.check_and_record("1.2.3.4", now=103.0).allowed is True

    def test_denied_request_does_not_reset_window(self, admission, store):
        """Only admitted requests move the rate timer."""
        admission.check_and_record("1.2.3.4", now=100.0)
        admission.check_and_record("1.2.3.4", now=102.0)

        assert store.peek_last_request_at("1.2.3.4") == 100.0
        assert admission.check_and_record("1.2.3.4", now=103.0).allowed is True
        assert store.peek_last_request_at("1.2.3.4") == 103.0

    def test_clients_do_not_interfere(self, admission):
        """Denying one client does not affect another's timer."""
        assert admission.check_and_record("alice", now=100.0).allowed is True
        assert admission.check_and_record("alice", now=100.1).allowed is False
        assert admission.check_and_record("bob", now=100.2).allowed is True
        assert admission.check_and_record("bob", now=101.0).allowed is False
        assert admission.check_and_record("alice", now=103.0).allowed is True

    def test_concurrent_requests_admit_exactly_one(self, admission):
        """Simultaneous requests from one client are linearized."""
        results = []
        barrier = threading.Barrier(10)

        def attempt():
            barrier.wait()
            results.append(admission.check_and_record("1.2.3.4", now=100.0).allowed)

        threads = [threading.Thread(target=attempt) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 9

    def test_uses_store_clock_by_default(self):
        clock = iter([50.0, 51.0])
        store = ClientStateStore(min_interval=3.0, clock=lambda: next(clock))
        admission = AdmissionController(store)

        assert admission.check_and_record("x").allowed is True
        assert admission.check_and_record("x").retry_after == 2


class TestHistory:
    """Tests for recent-output history."""

    def test_empty_for_unknown_client(self, store):
        assert store.get_history("nobody") == []

    @pytest.mark.parametrize("n", [1, 2, 3, 5])
    def test_length_is_min_of_n_and_two(self, store, n):
        """History keeps the most recent outputs in arrival order."""
        for i in range(n):
            store.append_history("c", f"thought {i}", now=float(i))

        history = store.get_history("c")

        assert len(history) == min(n, 2)
        assert history == [f"thought {i}" for i in range(n)][-2:]

    def test_get_history_returns_copy(self, store):
        store.append_history("c", "one", now=0.0)

        store.get_history("c").append("tampered")

        assert store.get_history("c") == ["one"]

    def test_clear_history(self, store):
        store.append_history("c", "one", now=0.0)
        store.append_history("d", "two", now=0.0)

        store.clear_history("c")

        assert store.get_history("c") == []
        assert store.get_history("d") == ["two"]

    def test_clear_unknown_client_is_noop(self, store):
        store.clear_history("nobody")

        assert store.stats() == {"rate_records": 0, "histories": 0}

    def test_touch_does_not_create_history(self, store):
        store.touch("nobody", now=10.0)

        assert store.stats()["histories"] == 0


class TestSweep:
    """Tests for ClientStateStore.sweep()."""

    def test_stale_rate_record_removed(self, store):
        """Rate records idle longer than 10x the interval are dropped."""
        store.try_record_request("old", now=0.0)
        store.try_record_request("fresh", now=25.0)

        report = store.sweep(now=31.0)

        assert report.rate_before == 2
        assert report.rate_after == 1
        assert store.peek_last_request_at("old") is None
        assert store.peek_last_request_at("fresh") == 25.0

    def test_active_history_survives_rate_expiry(self, store):
        store.try_record_request("c", now=0.0)
        store.append_history("c", "kept", now=0.0)

        store.sweep(now=60.0)

        assert store.get_history("c") == ["kept"]
        assert store.peek_last_request_at("c") is None

    def test_inactive_history_removed_with_rate_record(self):
        """After 30 minutes of inactivity both records go."""
        store = ClientStateStore(min_interval=3.0, history_ttl=1800.0)
        store.append_history("c", "stale", now=0.0)
        store.try_record_request("c", now=1790.0)

        report = store.sweep(now=1801.0)

        assert store.get_history("c") == []
        assert store.peek_last_request_at("c") is None
        assert report.history_before == 1
        assert report.history_after == 0

    def test_touch_keeps_history_alive(self, store):
        store.append_history("c", "kept", now=0.0)
        store.touch("c", now=1500.0)

        store.sweep(now=2000.0)

        assert store.get_history("c") == ["kept"]

    def test_late_append_never_moves_activity_backwards(self, store):
        """An append carrying an older timestamp does not shorten the history's life."""
        store.append_history("c", "recent", now=1500.0)
        store.append_history("c", "delayed", now=0.0)

        store.sweep(now=2000.0)

        assert store.get_history("c") == ["recent", "delayed"]

    def test_sweep_empty_store(self, store):
        report = store.sweep(now=0.0)

        assert (report.rate_before, report.rate_after) == (0, 0)
        assert (report.history_before, report.history_after) == (0, 0)


class TestRunSweeper:
    """Tests for the background sweeper task."""

    def test_sweeper_runs_periodically_until_cancelled(self, store):
        async def scenario():
            with patch.object(store, "sweep", wraps=store.sweep) as sweep:
                task = asyncio.create_task(run_sweeper(store, interval=0.01))
                await asyncio.sleep(0.1)
                task.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await task
                return sweep.call_count

        assert asyncio.run(scenario()) >= 2
