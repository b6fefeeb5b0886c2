"""Wait-for-completion primitive for long-running ARM operations.

ARM accepts a PUT / POST immediately and keeps provisioning in the
background.  :func:`wait_for_operation` re-reads the resource on a growing
interval until it succeeds, fails, or the timeout elapses.  Failures are
raised straight away; retrying is the caller's business.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass

from az_relocate.errors import OperationFailedError, OperationTimeoutError
from az_relocate.services.backoff import Backoff
from az_relocate.settings import RelocateSettings

logger = logging.getLogger(__name__)

SUCCEEDED = "Succeeded"
TERMINAL_FAILURE_STATES: frozenset[str] = frozenset({"Failed", "Canceled"})


@dataclass(frozen=True)
class OperationStatus:
    provisioning_state: str | None
    secondary_state: str | None = None

    def describe(self) -> str:
        if self.secondary_state is None:
            return str(self.provisioning_state)
        return f"{self.provisioning_state}/{self.secondary_state}"


def resource_status(
    resource: dict | None, secondary_key: str | None = None
) -> OperationStatus | None:
    """Extract an :class:`OperationStatus` from an ARM payload.

    *secondary_key* names a second field under ``properties`` (for example
    ``snapshotAccessState``).  ``None`` in means ``None`` out.
    """
    if resource is None:
        return None
    props = resource.get("properties", {})
    secondary = props.get(secondary_key) if secondary_key else None
    return OperationStatus(props.get("provisioningState"), secondary)


def backoff_from_settings(settings: RelocateSettings) -> Backoff:
    return Backoff(
        initial=settings.poll_initial_delay,
        maximum=settings.poll_max_delay,
        multiplier=settings.poll_multiplier,
    )


def _is_ready(status: OperationStatus, ready_states: Collection[str] | None) -> bool:
    if status.provisioning_state != SUCCEEDED:
        return False
    if ready_states is None:
        return True
    return status.secondary_state in ready_states


def wait_for_operation(
    fetch: Callable[[], OperationStatus | None],
    *,
    description: str,
    timeout: float,
    backoff: Backoff,
    ready_states: Collection[str] | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> OperationStatus:
    """Block until *fetch* reports completion and return the final status.

    Without *ready_states* the operation is complete once
    ``provisioningState == "Succeeded"``.  With *ready_states* the secondary
    state must also be one of them, which lets callers accept an early
    "usable" sub-state.

    Raises :class:`OperationFailedError` on ``Failed`` / ``Canceled`` or if
    the resource disappears, and :class:`OperationTimeoutError` once
    *timeout* seconds have elapsed.  Sleeps never overshoot the deadline and
    the status is read one last time at the deadline itself.
    """
    deadline = clock() + timeout
    delays = backoff.delays()
    last: OperationStatus | None = None
    polls = 0

    while True:
        status = fetch()
        polls += 1
        if status is None:
            raise OperationFailedError(
                f"{description}: resource no longer exists",
                resource=description,
                state="NotFound",
            )
        last = status
        if status.provisioning_state in TERMINAL_FAILURE_STATES:
            raise OperationFailedError(
                f"{description}: operation ended in state {status.describe()}",
                resource=description,
                state=status.describe(),
            )
        if _is_ready(status, ready_states):
            logger.debug("%s ready after %s poll(s): %s", description, polls, status.describe())
            return status

        remaining = deadline - clock()
        if remaining <= 0:
            raise OperationTimeoutError(
                f"{description}: timed out after {timeout:g}s "
                f"(last state {last.describe()})",
                resource=description,
                state=last.describe(),
            )
        delay = min(next(delays), remaining)
        logger.debug(
            "%s in state %s, next check in %.1fs", description, status.describe(), delay
        )
        sleep(delay)
