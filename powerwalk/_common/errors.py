"""Exception types raised by powerwalk."""


class PowerWalkError(Exception):
    """Base class for errors raised by powerwalk itself.

    Exceptions raised by visitors are never wrapped; they reach the caller
    unchanged.
    """


class InvalidLimitError(PowerWalkError, ValueError):
    """Raised when a concurrency limit below one is requested.

    This is a caller bug, not a runtime condition. It is raised before any
    worker is started and before the tree is touched.
    """

    def __init__(self, limit):
        self.limit = limit
        super().__init__(f"powerwalk: limit must be greater than zero, got {limit!r}")


class VisitorTimeoutError(PowerWalkError, TimeoutError):
    """Raised by a visitor wrapped with ``with_timeout`` that ran too long."""

    def __init__(self, path: str, seconds: float):
        self.path = path
        self.seconds = seconds
        super().__init__(f"visitor for '{path}' did not finish within {seconds}s")
