"""Thread-based implementation of powerwalk.

Visitors are plain callables run on worker threads, which suits blocking
work such as hashing file contents or calling a synchronous HTTP client.
"""

from .discovery import scan_tree, read_dir, stat_root
from .walker import (
    ConcurrentWalker,
    walk,
    walk_limit,
    with_timeout,
)

__all__ = [
    'ConcurrentWalker',
    'walk',
    'walk_limit',
    'with_timeout',
    'scan_tree',
    'read_dir',
    'stat_root',
]
