"""Configuration for concurrent walks.

A WalkConfig fixes everything about one traversal call that is not the root
or the visitor: how many workers run, how the discoverer hands entries to
them, and how long the call waits for workers once discovery is over.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import InvalidLimitError


# Number of visitor calls allowed in flight when no limit is given.
DEFAULT_LIMIT = 50


class DeliveryMode(Enum):
    """How the discoverer hands entries to the worker pool."""
    BLOCKING = "blocking"   # Wait for a free slot, re-checking cancellation
    DROP = "drop"           # Skip the entry if no slot is free right now


@dataclass
class WalkConfig:
    """Complete configuration for one concurrent walk.

    The dispatch channel holds at most ``limit`` pending entries, so memory
    use is bounded by the limit and not by the size of the tree.
    """

    limit: int = DEFAULT_LIMIT
    delivery: DeliveryMode = DeliveryMode.BLOCKING

    # Seconds between cancellation checks while the discoverer or a worker waits
    poll_interval: float = 0.05

    # Seconds to wait for workers after discovery ends (None waits forever)
    drain_timeout: Optional[float] = None

    @classmethod
    def dropping(cls, limit: int = DEFAULT_LIMIT) -> 'WalkConfig':
        """Config that never blocks the discoverer and skips entries instead.

        Args:
            limit: Number of workers

        Returns:
            WalkConfig using DeliveryMode.DROP
        """
        return cls(limit=limit, delivery=DeliveryMode.DROP)

    def validate(self) -> List[str]:
        """Validate configuration for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not _is_int(self.limit) or self.limit < 1:
            errors.append("limit must be an integer greater than zero")

        if not isinstance(self.delivery, DeliveryMode):
            errors.append(f"unknown delivery mode: {self.delivery!r}")

        if not _is_number(self.poll_interval) or self.poll_interval <= 0:
            errors.append("poll_interval must be a positive number")

        if self.drain_timeout is not None and (
            not _is_number(self.drain_timeout) or self.drain_timeout < 0
        ):
            errors.append("drain_timeout must be None or a non-negative number")

        return errors

    def check(self) -> None:
        """Raise if the configuration cannot be used.

        Raises:
            InvalidLimitError: If the limit is not a positive integer
            ValueError: For any other problem reported by validate()
        """
        if not _is_int(self.limit) or self.limit < 1:
            raise InvalidLimitError(self.limit)
        errors = self.validate()
        if errors:
            raise ValueError("; ".join(errors))


@dataclass
class WalkStats:
    """Counters for one walk, safe to update from several threads."""

    discovered: int = 0
    delivered: int = 0
    dropped: int = 0
    visited: int = 0
    failed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def incr(self, name: str) -> None:
        """Add one to the named counter."""
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
