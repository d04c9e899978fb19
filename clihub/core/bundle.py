"""Export and import of the whole configuration document as one bundle file.

A bundle carries the SSOT only, never live files::

    {"format": "cli-hub-bundle", "bundleVersion": 1,
     "exportedAt": "<iso8601>", "config": {...}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from clihub.core.errors import BundleFormatError, CorruptConfigError, StorageIOError
from clihub.core.migration import MigrationRunner, validate_document
from clihub.core.models import CURRENT_SCHEMA_VERSION, ConfigDocument
from clihub.core.store import ProfileStore
from clihub.utils.atomic_write import atomic_write
from clihub.utils.json_utils import dump_canonical_json
from clihub.utils.log import get_logger

logger = get_logger()

BUNDLE_FORMAT = "cli-hub-bundle"
BUNDLE_VERSION = 1


@dataclass(frozen=True)
class ImportResult:
    """Outcome of an import or restore.

    The document is always committed when this is returned; ``render_failures``
    names targets whose live files could not be re-rendered and need their
    current provider selected again.
    """

    backup_id: Optional[str]
    render_failures: Dict[str, str] = field(default_factory=dict)
    source_version: int = CURRENT_SCHEMA_VERSION

    @property
    def fully_synced(self) -> bool:
        return not self.render_failures


class ImportExportCoordinator:
    def __init__(self, store: ProfileStore, runner: Optional[MigrationRunner] = None) -> None:
        self.store = store
        self.runner = runner or MigrationRunner()

    # Export

    def build_bundle(self) -> Dict[str, Any]:
        return {
            "format": BUNDLE_FORMAT,
            "bundleVersion": BUNDLE_VERSION,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "config": self.store.document().to_dict(),
        }

    def export_bundle(self) -> bytes:
        return dump_canonical_json(self.build_bundle()).encode("utf-8")

    def export_to_file(self, path: Union[str, Path]) -> Path:
        target = Path(path).expanduser()
        atomic_write(target, self.export_bundle())
        logger.info("[bundle] Exported configuration", extra={"path": str(target)})
        return target

    # Import

    def parse_bundle(self, data: bytes) -> tuple[ConfigDocument, int]:
        """Validate a bundle and return its document migrated to the current schema."""
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise BundleFormatError(f"Bundle is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise BundleFormatError("Bundle root must be a JSON object")
        if payload.get("format") != BUNDLE_FORMAT:
            raise BundleFormatError(
                f"Not a cli-hub bundle: expected format '{BUNDLE_FORMAT}', "
                f"got {payload.get('format')!r}"
            )
        bundle_version = payload.get("bundleVersion")
        if isinstance(bundle_version, bool) or not isinstance(bundle_version, int):
            raise BundleFormatError("Bundle 'bundleVersion' must be an integer")
        if bundle_version > BUNDLE_VERSION or bundle_version < 1:
            raise BundleFormatError(f"Unsupported bundle version {bundle_version}")
        config = payload.get("config")
        if not isinstance(config, dict):
            raise BundleFormatError("Bundle 'config' must be a JSON object")

        try:
            migrated = self.runner.migrate(config)
            document = validate_document(migrated.document)
        except CorruptConfigError as exc:
            detail = f": {exc.detail}" if exc.detail else ""
            raise BundleFormatError(f"Bundle configuration is invalid ({exc}){detail}") from exc
        return document, migrated.from_version

    def import_bundle(self, data: bytes) -> ImportResult:
        document, source_version = self.parse_bundle(data)
        return self._install(document, source_version, origin="bundle")

    def import_from_file(self, path: Union[str, Path]) -> ImportResult:
        source = Path(path).expanduser()
        try:
            data = source.read_bytes()
        except OSError as exc:
            raise StorageIOError(
                f"Failed to read bundle {source}: {exc}", path=source, operation="read"
            ) from exc
        return self.import_bundle(data)

    def restore_backup(self, backup_id: str) -> ImportResult:
        """Replace the document with a snapshot taken earlier."""
        path = self.store.backups.path_for(backup_id)
        raw = self.store.backups.load(backup_id)
        migrated = self.runner.migrate(raw, path)
        document = validate_document(migrated.document, path)
        return self._install(document, migrated.from_version, origin=f"backup:{backup_id}")

    def _install(self, document: ConfigDocument, source_version: int, *, origin: str) -> ImportResult:
        current = self.store.document()
        snapshot = self.store.backups.snapshot(
            current.to_dict(), current.version, retain=current.settings.backup_retain
        )
        failures = self.store.replace_document(document)
        logger.info(
            "[bundle] Installed configuration",
            extra={
                "origin": origin,
                "backup_id": snapshot.backup_id,
                "source_version": source_version,
                "render_failures": sorted(failures),
            },
        )
        return ImportResult(
            backup_id=snapshot.backup_id,
            render_failures=failures,
            source_version=source_version,
        )


__all__ = ["BUNDLE_FORMAT", "BUNDLE_VERSION", "ImportExportCoordinator", "ImportResult"]
