"""Single-threaded tree discovery.

This is the primitive the concurrent walkers consume: it visits every entry
under a root exactly once, depth-first with children in lexical order, and
never descends into symbolic links. Errors are reported on the entry they
belong to instead of stopping the scan.
"""

import os
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from .._common import WalkItem, is_walkable_dir


# (path, lstat result or None, error or None) for one child entry
Entry = Tuple[str, Optional[os.stat_result], Optional[OSError]]


def stat_root(root: Union[str, Path]) -> Entry:
    """lstat the root of a scan.

    Args:
        root: Root path

    Returns:
        Entry for the root; the error slot is set if it could not be stat'ed
    """
    path = os.fspath(root)
    try:
        return path, os.lstat(path), None
    except OSError as e:
        return path, None, e


def read_dir(path: str) -> Tuple[List[Entry], Optional[OSError]]:
    """List a directory and lstat each child.

    Args:
        path: Directory to read

    Returns:
        Tuple of (children in lexical order, listing error). When the
        directory cannot be listed the children list is empty.
    """
    try:
        names = sorted(os.listdir(path))
    except OSError as e:
        return [], e

    children = []
    for name in names:
        child = os.path.join(path, name)
        try:
            children.append((child, os.lstat(child), None))
        except OSError as e:
            # Vanished or unreadable between listing and stat
            children.append((child, None, e))
    return children, None


def scan_tree(root: Union[str, Path]) -> Iterator[WalkItem]:
    """Yield a WalkItem for every entry under root, root included.

    A directory that cannot be listed is yielded once, carrying the listing
    error, and its subtree is skipped. An entry that cannot be stat'ed is
    yielded with no metadata and the stat error.

    Args:
        root: Root path

    Yields:
        WalkItem per entry in depth-first pre-order
    """
    # Explicit stack so deep trees don't hit the recursion limit
    stack = [stat_root(root)]

    while stack:
        path, info, error = stack.pop()

        if error is not None or not is_walkable_dir(info):
            yield WalkItem(path, info, error)
            continue

        children, list_error = read_dir(path)
        yield WalkItem(path, info, list_error)

        # Reversed so the lexically first child is popped first
        stack.extend(reversed(children))
