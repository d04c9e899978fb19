"""Crash-safe writes for single files and multi-file write-sets.

Each destination is replaced with ``os.replace`` from a sibling temporary
file, so a reader always sees either the old or the new content. A write-set
commits file by file; if any step fails the files already committed are put
back to the bytes captured before the set started.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from clihub.core.errors import RollbackError, StorageIOError
from clihub.utils.log import get_logger

logger = get_logger()

PathLike = Union[str, Path]


@dataclass(frozen=True)
class FileWrite:
    """One destination and the bytes it should hold after the commit."""

    path: Path
    data: bytes

    @classmethod
    def text(cls, path: PathLike, content: str) -> "FileWrite":
        return cls(Path(path), content.encode("utf-8"))


def read_prior(path: Path) -> Optional[bytes]:
    """Return current bytes of ``path`` or None when it does not exist."""
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise StorageIOError(
            f"Failed to read {path}: {exc}", path=path, operation="read"
        ) from exc


def _replace_atomic(path: Path, data: bytes) -> None:
    """Write ``data`` to a temp sibling, fsync it, then rename over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        with contextlib.suppress(OSError):
            os.chmod(temp_path, os.stat(path).st_mode)
        os.replace(temp_path, path)
    finally:
        with contextlib.suppress(OSError):
            if os.path.exists(temp_path):
                os.unlink(temp_path)


def atomic_write(path: PathLike, data: Union[bytes, str]) -> None:
    """Atomically replace a single file."""
    payload = data.encode("utf-8") if isinstance(data, str) else data
    write_all([FileWrite(Path(path), payload)])


def _restore(path: Path, prior: Optional[bytes]) -> None:
    if prior is None:
        with contextlib.suppress(FileNotFoundError):
            path.unlink()
        return
    _replace_atomic(path, prior)


def _rollback(committed: Iterable[Tuple[Path, Optional[bytes]]]) -> List[str]:
    failures: List[str] = []
    for path, prior in reversed(list(committed)):
        try:
            _restore(path, prior)
            logger.debug("[atomic_write] Rolled back file", extra={"path": str(path)})
        except OSError as exc:
            failures.append(f"{path}: {exc}")
            logger.error(
                "[atomic_write] Rollback failed: %s: %s",
                type(exc).__name__,
                exc,
                extra={"path": str(path)},
            )
    return failures


def write_all(files: Sequence[FileWrite]) -> None:
    """Commit every file in ``files`` or none of them.

    Raises:
        StorageIOError: a write or rename failed; committed files were restored.
        RollbackError: a write failed and restoring a committed file failed too.
    """
    if not files:
        return

    seen: set[Path] = set()
    for item in files:
        if item.path in seen:
            raise StorageIOError(
                f"Duplicate destination in write-set: {item.path}",
                path=item.path,
                operation="plan",
            )
        seen.add(item.path)

    priors = [(item.path, read_prior(item.path)) for item in files]
    committed: List[Tuple[Path, Optional[bytes]]] = []

    for item, (_, prior) in zip(files, priors):
        try:
            _replace_atomic(item.path, item.data)
        except OSError as exc:
            logger.warning(
                "[atomic_write] Commit failed: %s: %s",
                type(exc).__name__,
                exc,
                extra={"path": str(item.path), "committed": len(committed), "total": len(files)},
            )
            rollback_failures = _rollback(committed)
            if rollback_failures:
                raise RollbackError(
                    f"Failed to write {item.path} ({exc}); rollback also failed for: "
                    + "; ".join(rollback_failures),
                    path=item.path,
                    operation="rollback",
                ) from exc
            raise StorageIOError(
                f"Failed to write {item.path}: {exc}",
                path=item.path,
                operation="write",
            ) from exc
        committed.append((item.path, prior))

    logger.debug(
        "[atomic_write] Committed write-set",
        extra={"paths": [str(item.path) for item in files]},
    )


__all__ = ["FileWrite", "atomic_write", "read_prior", "write_all"]
