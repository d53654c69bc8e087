"""The record handed from the discoverer to a worker."""

import os
import stat as stat_module
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class WalkItem:
    """One discovered entry.

    Attributes:
        path: Path of the entry as a string, built by joining names onto the root
        metadata: ``os.lstat`` result, or None when the entry could not be stat'ed
        error: The error met while discovering this entry, if any
    """
    path: str
    metadata: Optional[os.stat_result] = None
    error: Optional[OSError] = None

    @property
    def is_dir(self) -> bool:
        """True if the entry is a directory (symlinks to directories are not)."""
        return is_walkable_dir(self.metadata)


def is_walkable_dir(info: Optional[os.stat_result]) -> bool:
    """Directories are descended; lstat results for symlinks never match."""
    return info is not None and stat_module.S_ISDIR(info.st_mode)
