"""Rotating snapshots of the configuration document.

Each snapshot is ``backups/backup_<YYYYmmdd_HHMMSS_ffffff>_<sequence>.json``
holding an envelope with the document and where it came from. Retention is
decided by the creation sequence, never by file mtimes.
"""

from __future__ import annotations

import contextlib
import json
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from clihub.core.errors import CorruptConfigError, SettingsValidationError, StorageIOError
from clihub.utils.atomic_write import atomic_write
from clihub.utils.json_utils import dump_canonical_json
from clihub.utils.log import get_logger

logger = get_logger()

BACKUP_PREFIX = "backup_"
DEFAULT_RETAIN = 10
_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
_NAME_RE = re.compile(r"^backup_(\d{8}_\d{6}_\d{6})_(\d+)\.json$")


@dataclass(frozen=True)
class BackupSnapshot:
    backup_id: str
    timestamp: datetime
    path: Path
    source_version: Optional[int]
    sequence: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backupId": self.backup_id,
            "timestamp": self.timestamp.isoformat(),
            "path": str(self.path),
            "sourceVersion": self.source_version,
            "sequence": self.sequence,
        }


def _parse_name(name: str) -> Optional[Tuple[datetime, int]]:
    match = _NAME_RE.match(name)
    if not match:
        return None
    try:
        stamp = datetime.strptime(match.group(1), _TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return stamp, int(match.group(2))


class BackupManager:
    """Creates, lists, loads and prunes snapshots in one directory."""

    def __init__(self, backup_dir: Path, retain: int = DEFAULT_RETAIN) -> None:
        self.backup_dir = backup_dir
        self.retain = retain
        self._lock = threading.Lock()

    def _scan(self) -> List[Tuple[int, datetime, Path]]:
        """All ``.json`` files as (sequence, timestamp, path); foreign files sort oldest."""
        if not self.backup_dir.is_dir():
            return []
        entries: List[Tuple[int, datetime, Path]] = []
        for path in self.backup_dir.glob("*.json"):
            if not path.is_file():
                continue
            parsed = _parse_name(path.name)
            if parsed is None:
                entries.append((-1, datetime.min, path))
            else:
                stamp, sequence = parsed
                entries.append((sequence, stamp, path))
        entries.sort(key=lambda entry: (entry[0], entry[1], entry[2].name))
        return entries

    def _next_sequence(self) -> int:
        return max((entry[0] for entry in self._scan()), default=0) + 1

    def snapshot(
        self,
        document: Mapping[str, Any],
        source_version: Optional[int],
        retain: Optional[int] = None,
    ) -> BackupSnapshot:
        """Write ``document`` as the newest snapshot, then prune."""
        with self._lock:
            sequence = max(self._next_sequence(), 1)
            created = datetime.now()
            backup_id = f"{BACKUP_PREFIX}{created.strftime(_TIMESTAMP_FORMAT)}_{sequence:06d}"
            path = self.backup_dir / f"{backup_id}.json"
            envelope = {
                "sequence": sequence,
                "createdAt": created.isoformat(),
                "sourceVersion": source_version,
                "document": document,
            }
            atomic_write(path, dump_canonical_json(envelope))
            logger.info(
                "[backup] Created snapshot",
                extra={"backup_id": backup_id, "sequence": sequence, "source_version": source_version},
            )
            self._prune_locked(self.retain if retain is None else retain)
        return BackupSnapshot(
            backup_id=backup_id,
            timestamp=created,
            path=path,
            source_version=source_version,
            sequence=sequence,
        )

    def prune(self, retain: Optional[int] = None) -> List[Path]:
        """Delete all but the ``retain`` newest snapshots; returns the removed paths."""
        with self._lock:
            return self._prune_locked(self.retain if retain is None else retain)

    def _prune_locked(self, retain: int) -> List[Path]:
        if retain < 1:
            raise SettingsValidationError(f"Backup retention must be at least 1, got {retain}")
        entries = self._scan()
        excess = entries[: max(len(entries) - retain, 0)]
        removed: List[Path] = []
        for _, _, path in excess:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageIOError(
                    f"Failed to remove old backup {path}: {exc}", path=path, operation="prune"
                ) from exc
            removed.append(path)
        if removed:
            logger.debug("[backup] Pruned snapshots", extra={"removed": len(removed), "retain": retain})
        return removed

    def list(self) -> List[BackupSnapshot]:
        """Recognized snapshots, newest first."""
        snapshots: List[BackupSnapshot] = []
        for sequence, stamp, path in reversed(self._scan()):
            if sequence < 0:
                continue
            source_version: Optional[int] = None
            with contextlib.suppress(OSError, ValueError):
                envelope = json.loads(path.read_text(encoding="utf-8"))
                if isinstance(envelope, dict) and isinstance(envelope.get("sourceVersion"), int):
                    source_version = envelope["sourceVersion"]
            snapshots.append(
                BackupSnapshot(
                    backup_id=path.stem,
                    timestamp=stamp,
                    path=path,
                    source_version=source_version,
                    sequence=sequence,
                )
            )
        return snapshots

    def path_for(self, backup_id: str) -> Path:
        name = backup_id if backup_id.endswith(".json") else f"{backup_id}.json"
        if Path(name).name != name or _parse_name(name) is None:
            raise SettingsValidationError(f"Invalid backup id: '{backup_id}'")
        return self.backup_dir / name

    def load(self, backup_id: str) -> Dict[str, Any]:
        """Return the raw document stored in a snapshot."""
        path = self.path_for(backup_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise StorageIOError(
                f"Backup '{backup_id}' does not exist", path=path, operation="read"
            ) from exc
        except OSError as exc:
            raise StorageIOError(f"Failed to read {path}: {exc}", path=path, operation="read") from exc
        try:
            envelope = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CorruptConfigError("Backup is not valid JSON", path=path, detail=str(exc)) from exc
        if not isinstance(envelope, dict) or not isinstance(envelope.get("document"), dict):
            raise CorruptConfigError(
                "Backup envelope has no document", path=path, detail="missing 'document'"
            )
        return envelope["document"]


__all__ = ["BackupManager", "BackupSnapshot", "DEFAULT_RETAIN"]
