"""Exponential reconnect interval calculator."""

from dataclasses import dataclass, field
from typing import Optional

from livechat.core.config import get_settings


@dataclass
class ReconnectBackoff:
    """Tracks the delay before the next reconnect attempt.

    ``current_interval_ms`` starts at ``default_interval_ms``, grows by
    ``multiplier`` on every ``increase()`` and never exceeds
    ``max_interval_ms``. ``reset()`` is called once after each successful
    (re)connection.
    """

    default_interval_ms: float = 1000
    multiplier: float = 1.8
    max_interval_ms: float = 60000
    current_interval_ms: float = field(init=False)
    attempt: int = field(init=False, default=0)

    def __post_init__(self):
        if self.max_interval_ms < self.default_interval_ms:
            raise ValueError("max_interval_ms must be >= default_interval_ms")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        self.current_interval_ms = self.default_interval_ms

    @classmethod
    def from_settings(cls, settings=None) -> "ReconnectBackoff":
        settings = settings or get_settings()
        return cls(
            default_interval_ms=settings.reconnect_default_interval_ms,
            multiplier=settings.reconnect_multiplier,
            max_interval_ms=settings.reconnect_max_interval_ms,
        )

    def increase(self) -> float:
        """Grow the interval for the next attempt and return it."""
        self.current_interval_ms = min(
            self.current_interval_ms * self.multiplier, self.max_interval_ms
        )
        self.attempt += 1
        return self.current_interval_ms

    def reset(self) -> None:
        self.current_interval_ms = self.default_interval_ms
        self.attempt = 0

    @property
    def delay_seconds(self) -> float:
        return self.current_interval_ms / 1000


def next_index(index: Optional[int], size: int) -> int:
    """Round-robin successor of ``index`` in a list of ``size`` items."""
    if size <= 0:
        raise ValueError("cannot pick from an empty list")
    if index is None or index + 1 >= size:
        return 0
    return index + 1
