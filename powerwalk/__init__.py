"""powerwalk - concurrent file tree walking.

powerwalk enumerates every file and directory under a root and calls a
visitor for each one on a bounded pool of workers, so slow visitors (hashing,
uploads, network lookups) don't serialize the walk. The first exception
raised by a visitor cancels the walk and is raised to the caller.

Choose your implementation:
━━━━━━━━━━━━━━━━━━━━━━━━━━
Threads:
    from powerwalk.sync import walk, walk_limit

Asyncio:
    from powerwalk.aio import walk_async, walk_limit_async
━━━━━━━━━━━━━━━━━━━━━━━━━━

``walk`` and ``walk_limit`` are also importable from the top-level package.
"""

import logging

__version__ = "0.1.0"

from . import sync
from . import aio
from ._common import (
    DEFAULT_LIMIT,
    DeliveryMode,
    InvalidLimitError,
    PowerWalkError,
    VisitorTimeoutError,
    WalkConfig,
    WalkItem,
    WalkStats,
)
from .sync import walk, walk_limit, with_timeout

# Library logging stays silent unless the application configures it
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "sync",
    "aio",
    "walk",
    "walk_limit",
    "with_timeout",
    "DEFAULT_LIMIT",
    "DeliveryMode",
    "WalkConfig",
    "WalkItem",
    "WalkStats",
    "PowerWalkError",
    "InvalidLimitError",
    "VisitorTimeoutError",
]
