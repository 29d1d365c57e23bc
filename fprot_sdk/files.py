"""Directory enumeration for directory scans."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Union

from fprot_sdk.exceptions import FprotConfigurationError


def get_files(directory: Union[str, Path], recursive: bool = True) -> list[str]:
    """List the regular files under *directory*, in sorted walk order.

    Raises:
        FileNotFoundError: If *directory* does not exist.
        FprotConfigurationError: If *directory* is not a directory.
    """
    path = Path(directory)
    if not path.exists():
        raise FileNotFoundError(f"Directory not found: {path}")
    if not path.is_dir():
        raise FprotConfigurationError(f"The path: {path} is not a directory")

    files: list[str] = []
    for root, dirs, names in os.walk(path):
        dirs.sort()
        for name in sorted(names):
            full = os.path.join(root, name)
            if os.path.isfile(full):
                files.append(full)
        if not recursive:
            break
    return files
