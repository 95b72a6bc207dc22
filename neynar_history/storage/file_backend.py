"""
Local JSON-file snapshot history and tracked set.

Single-process store for local runs and tests, the server-side counterpart of
the browser-local store. One document holds everything:

    {"snapshots": {"<fid>": [snapshot, ...]}, "tracked": [entry, ...]}

Writes hold a process-local lock and go to a temp file that replaces the
document with os.replace, so a crash leaves either the old or the new document.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from neynar_history.core.exceptions import PersistenceFailure
from neynar_history.history_logging import get_logger
from neynar_history.storage.backend import HistoryMutation, StorageBackend, TrackedMutation
from neynar_history.storage.models import Snapshot, TrackedEntry, ensure_utc

logger = get_logger(__name__)


def _empty_document() -> dict[str, Any]:
    return {"snapshots": {}, "tracked": []}


class FileBackend(StorageBackend):
    """JSON document on local disk."""

    name = "file"

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return _empty_document()
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceFailure(f"Cannot read {self._path}: {e}") from e
        if not text.strip():
            return _empty_document()
        try:
            doc = json.loads(text)
        except ValueError as e:
            raise PersistenceFailure(f"Corrupt JSON in {self._path}: {e}") from e
        if not isinstance(doc, dict):
            raise PersistenceFailure(f"Expected JSON object in {self._path}")
        doc.setdefault("snapshots", {})
        doc.setdefault("tracked", [])
        return doc

    def _write(self, doc: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=self._path.name + ".", suffix=".tmp", dir=self._path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(doc, f, separators=(",", ":"))
                os.replace(tmp, self._path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise PersistenceFailure(f"Cannot write {self._path}: {e}") from e

    def _snapshots_for(self, doc: dict[str, Any], fid: int) -> list[Snapshot]:
        try:
            snaps = [Snapshot.from_dict(d) for d in doc["snapshots"].get(str(fid), [])]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"Invalid snapshot for fid {fid} in {self._path}: {e}") from e
        return sorted(snaps, key=lambda s: s.captured_at)

    def _tracked_from(self, doc: dict[str, Any]) -> list[TrackedEntry]:
        try:
            return [TrackedEntry.from_dict(d) for d in doc["tracked"]]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"Invalid tracked entry in {self._path}: {e}") from e

    def ensure_schema(self) -> None:
        with self._lock:
            if not self._path.exists():
                self._write(_empty_document())

    def load_history(self, fid: int, *, since: datetime | None = None) -> list[Snapshot]:
        with self._lock:
            snaps = self._snapshots_for(self._read(), fid)
        if since is not None:
            cutoff = ensure_utc(since)
            snaps = [s for s in snaps if s.captured_at >= cutoff]
        return snaps

    def update_history(self, fid: int, mutate: HistoryMutation) -> list[Snapshot]:
        with self._lock:
            doc = self._read()
            updated = mutate(self._snapshots_for(doc, fid))
            doc["snapshots"][str(fid)] = [s.to_dict() for s in updated]
            self._write(doc)
        return updated

    def load_tracked(self) -> list[TrackedEntry]:
        with self._lock:
            return self._tracked_from(self._read())

    def update_tracked(self, mutate: TrackedMutation) -> list[TrackedEntry]:
        with self._lock:
            doc = self._read()
            updated = mutate(self._tracked_from(doc))
            doc["tracked"] = [e.to_dict() for e in updated]
            self._write(doc)
        return updated
