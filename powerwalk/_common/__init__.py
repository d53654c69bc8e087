"""Components shared between the sync and aio walkers.

Nothing in this package performs I/O. It must never import from
``powerwalk.sync`` or ``powerwalk.aio``.
"""

from .config import DEFAULT_LIMIT, DeliveryMode, WalkConfig, WalkStats
from .errors import InvalidLimitError, PowerWalkError, VisitorTimeoutError
from .item import WalkItem, is_walkable_dir

__all__ = [
    'DEFAULT_LIMIT',
    'DeliveryMode',
    'WalkConfig',
    'WalkStats',
    'WalkItem',
    'is_walkable_dir',
    'PowerWalkError',
    'InvalidLimitError',
    'VisitorTimeoutError',
]
