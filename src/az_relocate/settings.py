"""Relocation settings loaded from environment variables."""

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class RelocateSettings(BaseSettings):
    """Deployment policy and timing knobs for az-relocate.

    Values are read from ``AZ_RELOCATE_*`` environment variables
    (case-insensitive) and optionally from a ``.env`` file in the working
    directory.
    """

    # Point-in-time copy mechanism: per-disk incremental snapshots or one
    # crash-consistent restore point for the whole VM.
    copy_strategy: Literal["snapshot", "restore_point"] = "snapshot"

    # "fail": an incompatible placement group rejects the move.
    # "skip": the replica is created outside the group, with a warning.
    placement_group_policy: Literal["fail", "skip"] = "fail"

    # When True the replica may land in the source resource group provided
    # its name differs from the source VM.
    allow_same_resource_group: bool = True

    valid_zones: list[str] = Field(default_factory=lambda: ["1", "2", "3"])

    max_parallel_disks: int = Field(default=1, ge=1)

    poll_initial_delay: float = Field(default=5.0, gt=0)
    poll_max_delay: float = Field(default=60.0, gt=0)
    poll_multiplier: float = 1.5
    operation_timeout: float = Field(default=3600.0, gt=0)

    disk_create_attempts: int = Field(default=3, ge=1)
    disk_retry_delay: float = Field(default=30.0, ge=0)

    instant_access_minutes: int = Field(default=60, ge=60, le=300)

    keep_copies: bool = False

    model_config = {
        "env_prefix": "AZ_RELOCATE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def _validate_polling(self) -> "RelocateSettings":
        if self.poll_multiplier < 1:
            raise ValueError("AZ_RELOCATE_POLL_MULTIPLIER must be >= 1.")
        if self.poll_max_delay < self.poll_initial_delay:
            raise ValueError(
                "AZ_RELOCATE_POLL_MAX_DELAY must not be smaller than "
                "AZ_RELOCATE_POLL_INITIAL_DELAY."
            )
        return self


_settings: RelocateSettings | None = None


def get_settings() -> RelocateSettings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = RelocateSettings()
        logger.debug("Loaded settings: %s", _settings.model_dump())
    return _settings
