"""Asynchronous implementation of powerwalk.

Visitors are coroutine functions run as tasks on the caller's event loop,
which suits I/O-bound work such as HTTP uploads with an async client.
"""

from .discovery import scan_tree_async
from .walker import (
    AsyncConcurrentWalker,
    walk_async,
    walk_limit_async,
    with_timeout_async,
)

__all__ = [
    'AsyncConcurrentWalker',
    'walk_async',
    'walk_limit_async',
    'with_timeout_async',
    'scan_tree_async',
]
