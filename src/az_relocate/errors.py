"""Error taxonomy for zone relocation.

``ValidationError`` and ``IncompatibilityError`` are raised before anything
is created.  ``ProvisioningError`` may follow partial creation; the
orchestrator attaches the partial :class:`MigrationResult` as ``result`` so
the caller can see what already exists and simply re-run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from az_relocate.models.migration import DiskOutcome, MigrationResult, ValidationReport


class RelocateError(Exception):
    """Base class for every error raised by az-relocate."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.result: MigrationResult | None = None


class ValidationError(RelocateError):
    """Pre-flight checks failed; nothing has been changed."""

    def __init__(self, report: ValidationReport) -> None:
        lines = [f"[{v.kind}] {v.message}" for v in report.violations]
        super().__init__(
            f"Validation failed with {len(lines)} violation(s):\n  " + "\n  ".join(lines)
        )
        self.report = report


class IncompatibilityError(RelocateError):
    """A structural mismatch that cannot be resolved automatically."""


class PlacementGroupStateError(IncompatibilityError):
    """Zonal members of one placement group report different zones."""

    def __init__(self, group_id: str, zones: list[str]) -> None:
        super().__init__(
            f"Placement group {group_id} has zonal members in different zones "
            f"({', '.join(sorted(zones))}); provider state is inconsistent."
        )
        self.group_id = group_id
        self.zones = sorted(zones)


class ConflictError(RelocateError):
    """A resource the move intends to create already exists."""

    def __init__(self, resource: str, message: str | None = None) -> None:
        super().__init__(message or f"{resource} already exists")
        self.resource = resource


class ProvisioningError(RelocateError):
    """A create or poll operation failed; partial state may exist."""

    def __init__(
        self,
        message: str,
        *,
        resource: str | None = None,
        state: str | None = None,
        attempts: int | None = None,
        outcomes: list[DiskOutcome] | None = None,
    ) -> None:
        super().__init__(message)
        self.resource = resource
        self.state = state
        self.attempts = attempts
        self.outcomes = outcomes or []


class OperationFailedError(ProvisioningError):
    """An operation reached a terminal failure state."""


class OperationTimeoutError(ProvisioningError):
    """An operation did not complete within its timeout."""
