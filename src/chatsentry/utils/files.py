"""Atomic file writes for snapshots and workbooks."""
import os
import tempfile
from pathlib import Path
from typing import Callable

from chatsentry import PersistenceError


def atomic_write(path: Path, writer: Callable[[Path], None]) -> None:
    """Write a file through a sibling temp file and rename it into place.

    Args:
        path: Final destination
        writer: Callable that writes the complete content to the temp path it receives

    Raises:
        PersistenceError: If writing or renaming fails; the destination is left untouched
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=path.suffix, dir=path.parent)
        os.close(fd)
    except OSError as e:
        raise PersistenceError(f"Cannot prepare write for {path}: {e}") from e

    tmp_path = Path(tmp_name)
    try:
        writer(tmp_path)
        os.replace(tmp_path, path)
    except Exception as e:
        tmp_path.unlink(missing_ok=True)
        raise PersistenceError(f"Failed to write {path}: {e}") from e


def atomic_write_text(path: Path, text: str) -> None:
    """Atomically replace a UTF-8 text file."""
    atomic_write(path, lambda tmp: tmp.write_text(text, encoding='utf-8'))
