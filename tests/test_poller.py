"""Tests for the shared back-off schedule and the operation poller."""

from itertools import islice

import pytest
from factories import FakeClock

from az_relocate.errors import OperationFailedError, OperationTimeoutError
from az_relocate.services.backoff import Backoff
from az_relocate.services.poller import OperationStatus, resource_status, wait_for_operation


def _sequence(*states: str | tuple[str, str] | None):
    """Fetch callable returning *states* in order, repeating the last one."""
    items = list(states)

    def fetch():
        state = items.pop(0) if len(items) > 1 else items[0]
        if state is None:
            return None
        if isinstance(state, tuple):
            return OperationStatus(*state)
        return OperationStatus(state)

    return fetch


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------


class TestBackoff:
    def test_geometric_growth_is_capped(self):
        assert list(islice(Backoff(1, 10, 2).delays(), 6)) == [1, 2, 4, 8, 10, 10]

    def test_fixed_schedule(self):
        assert list(islice(Backoff.fixed(30).delays(), 3)) == [30, 30, 30]

    def test_rejects_maximum_below_initial(self):
        with pytest.raises(ValueError, match="bounds"):
            Backoff(10, 5)

    def test_rejects_shrinking_multiplier(self):
        with pytest.raises(ValueError, match="multiplier"):
            Backoff(1, 5, 0.5)


# ---------------------------------------------------------------------------
# resource_status
# ---------------------------------------------------------------------------


class TestResourceStatus:
    def test_none_stays_none(self):
        assert resource_status(None) is None

    def test_reads_provisioning_state(self):
        status = resource_status({"properties": {"provisioningState": "Creating"}})
        assert status == OperationStatus("Creating")

    def test_reads_secondary_key(self):
        payload = {
            "properties": {"provisioningState": "Succeeded", "snapshotAccessState": "Pending"}
        }
        status = resource_status(payload, "snapshotAccessState")
        assert status == OperationStatus("Succeeded", "Pending")
        assert status.describe() == "Succeeded/Pending"


# ---------------------------------------------------------------------------
# wait_for_operation
# ---------------------------------------------------------------------------


class TestWaitForOperation:
    def _wait(self, fetch, clock, timeout=100.0, backoff=None, **kwargs):
        return wait_for_operation(
            fetch,
            description="disk d1",
            timeout=timeout,
            backoff=backoff or Backoff(5, 60, 1.5),
            clock=clock,
            sleep=clock.sleep,
            **kwargs,
        )

    def test_returns_when_succeeded_before_timeout(self):
        clock = FakeClock()
        status = self._wait(_sequence("Creating", "Creating", "Succeeded"), clock)
        assert status.provisioning_state == "Succeeded"
        assert clock.sleeps == [5, 7.5]

    def test_failed_state_raises_immediately(self):
        clock = FakeClock()
        with pytest.raises(OperationFailedError) as exc_info:
            self._wait(_sequence("Failed"), clock)
        assert exc_info.value.state == "Failed"
        assert clock.sleeps == []

    def test_canceled_after_progress_raises_before_timeout(self):
        clock = FakeClock()
        with pytest.raises(OperationFailedError):
            self._wait(_sequence("Creating", "Canceled"), clock)
        assert clock.now < 100

    def test_timeout_lands_exactly_on_the_boundary(self):
        clock = FakeClock()
        with pytest.raises(OperationTimeoutError) as exc_info:
            self._wait(_sequence("Creating"), clock, backoff=Backoff.fixed(30))
        assert clock.now == 100
        assert clock.sleeps == [30, 30, 30, 10]
        assert exc_info.value.state == "Creating"
        assert "timed out after 100s" in str(exc_info.value)

    def test_status_is_read_one_last_time_at_the_deadline(self):
        clock = FakeClock()
        # Succeeds on the read that happens exactly at the deadline.
        fetch = _sequence("Creating", "Creating", "Succeeded")
        status = self._wait(fetch, clock, timeout=40, backoff=Backoff.fixed(30))
        assert status.provisioning_state == "Succeeded"
        assert clock.now == 40

    def test_ready_states_require_secondary_state(self):
        clock = FakeClock()
        fetch = _sequence(("Succeeded", "Pending"), ("Succeeded", "InstantAccess"))
        status = self._wait(fetch, clock, ready_states={"InstantAccess"})
        assert status.secondary_state == "InstantAccess"
        assert clock.sleeps == [5]

    def test_missing_resource_is_a_failure(self):
        clock = FakeClock()
        with pytest.raises(OperationFailedError) as exc_info:
            self._wait(_sequence(None), clock)
        assert exc_info.value.state == "NotFound"
