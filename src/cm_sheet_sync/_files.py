"""Local file helpers for state and cache files."""

import json
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def secure_file(path: "os.PathLike[str] | str") -> None:
    """Restrict *path* to owner read/write.

    POSIX permission bits mean nothing on Windows, so this does nothing there.
    """
    if sys.platform == "win32":
        return
    try:
        os.chmod(path, 0o600)
    except OSError as e:
        logger.debug("Could not restrict permissions on %s: %s", path, e)


def write_json_atomic(path: Path, data: Any, backup: bool = True) -> None:
    """
    Write JSON to *path* through a temp file, keeping a ``.backup`` copy.

    Args:
        path: Destination file
        data: JSON-serialisable payload
        backup: Copy the current file to ``<name>.backup`` before replacing it
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    if backup and path.exists():
        try:
            shutil.copy2(path, path.with_suffix(path.suffix + ".backup"))
        except OSError as e:
            logger.warning(f"Failed to create backup: {e}")

    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(temp_path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        temp_path.replace(path)
    except OSError:
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=str)
    secure_file(path)
