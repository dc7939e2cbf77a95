"""Persistent tracked-asset registry: JSON file storage.

The registry is stored as a list of ``TrackedAssetRef`` dicts in
``artifacts/marketpulse/tracked_assets.json`` (configurable).  Writes go
through a temp file + ``os.replace`` so a crash never leaves a truncated
file behind.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from .common_types import TrackedAssetRef
from .errors import PersistenceError

logger = logging.getLogger(__name__)


class JsonRegistryStore:
    """``load()`` / ``save()`` of the tracked-asset list."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> list[TrackedAssetRef]:
        """Return the last saved list, or ``[]`` if nothing was saved yet.

        Malformed entries are skipped; an unreadable file raises
        ``PersistenceError``.
        """
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"cannot read registry: {exc}", path=str(self.path)) from exc
        if not isinstance(data, list):
            raise PersistenceError("registry file is not a JSON list", path=str(self.path))

        refs: list[TrackedAssetRef] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            try:
                refs.append(TrackedAssetRef.from_dict(entry))
            except ValueError:
                logger.warning("Skipping malformed registry entry: %r", entry)
        return refs

    def save(self, refs: list[TrackedAssetRef]) -> None:
        content = json.dumps([r.to_dict() for r in refs], indent=2, allow_nan=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, suffix=".tmp", prefix="tracked_assets_"
            )
        except OSError as exc:
            raise PersistenceError(f"cannot write registry: {exc}", path=str(self.path)) from exc
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except BaseException as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            if isinstance(exc, OSError):
                raise PersistenceError(f"cannot write registry: {exc}", path=str(self.path)) from exc
            raise
        logger.info("Saved %d tracked assets → %s", len(refs), self.path)
