"""Geometric back-off shared by operation polling and creation retries."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class Backoff:
    """Delay schedule ``initial, initial*m, initial*m^2, ...`` capped at *maximum*.

    ``Backoff.fixed(d)`` gives a constant schedule (multiplier 1).
    """

    initial: float
    maximum: float
    multiplier: float = 1.5

    def __post_init__(self) -> None:
        if self.initial < 0 or self.maximum < self.initial:
            raise ValueError(
                f"Invalid back-off bounds: initial={self.initial}, maximum={self.maximum}"
            )
        if self.multiplier < 1:
            raise ValueError(f"Back-off multiplier must be >= 1, got {self.multiplier}")

    @classmethod
    def fixed(cls, delay: float) -> Backoff:
        return cls(initial=delay, maximum=delay, multiplier=1.0)

    def delays(self) -> Iterator[float]:
        """Yield delays forever."""
        delay = self.initial
        while True:
            yield delay
            delay = min(delay * self.multiplier, self.maximum)
