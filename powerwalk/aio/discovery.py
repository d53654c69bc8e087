"""Async tree discovery.

Same order and error reporting as powerwalk.sync.scan_tree. Directory
listings and stat calls run in the default executor so the event loop is
never blocked on the filesystem.
"""

import asyncio
import os
from pathlib import Path
from typing import AsyncIterator, List, Optional, Tuple, Union

from .._common import WalkItem, is_walkable_dir


# (path, lstat result or None, error or None) for one child entry
_Entry = Tuple[str, Optional[os.stat_result], Optional[OSError]]


def _stat_root(root: Union[str, Path]) -> _Entry:
    path = os.fspath(root)
    try:
        return path, os.lstat(path), None
    except OSError as e:
        return path, None, e


def _read_dir(path: str) -> Tuple[List[_Entry], Optional[OSError]]:
    """Scan a directory, stat'ing each child without following symlinks."""
    try:
        with os.scandir(path) as it:
            entries = sorted(it, key=lambda entry: entry.name)
    except OSError as e:
        return [], e

    children = []
    for entry in entries:
        try:
            children.append((entry.path, entry.stat(follow_symlinks=False), None))
        except OSError as e:
            children.append((entry.path, None, e))
    return children, None


async def scan_tree_async(root: Union[str, Path]) -> AsyncIterator[WalkItem]:
    """Yield a WalkItem for every entry under root, root included.

    Args:
        root: Root path

    Yields:
        WalkItem per entry in depth-first pre-order
    """
    stack = [await asyncio.to_thread(_stat_root, root)]

    while stack:
        path, info, error = stack.pop()

        if error is not None or not is_walkable_dir(info):
            yield WalkItem(path, info, error)
            continue

        # One executor hop per directory: listing and child stats together
        children, list_error = await asyncio.to_thread(_read_dir, path)
        yield WalkItem(path, info, list_error)

        stack.extend(reversed(children))
