"""
Record-store boundary used by the signup flow and the CMS routes.

Records are plain dicts addressed by ``type`` + ``slug`` + ``id``:

    {
        "id": "...", "slug": "...", "title": "...", "type": "user-profiles",
        "status": "published", "metadata": {...},
        "created_at": "...", "modified_at": "...",
    }

``find`` returns a possibly empty list; ``find_one`` and ``update_one`` raise
``RecordNotFound`` when nothing matches. Every other failure is a
``RecordStoreError``. Callers must keep the two apart.
"""

from __future__ import annotations

import copy
import re
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional, Protocol

from .ws_events import utc_timestamp


class RecordStoreError(Exception):
    """Store failure other than 'no match'."""


class RecordNotFound(RecordStoreError):
    """Zero records matched the lookup."""

    status = 404


class RecordStore(Protocol):
    def find(self, type: str, filter: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]: ...

    def find_one(self, type: str, filter: Mapping[str, Any]) -> Dict[str, Any]: ...

    def insert_one(self, type: str, fields: Mapping[str, Any]) -> Dict[str, Any]: ...

    def update_one(self, id: str, fields: Mapping[str, Any]) -> Dict[str, Any]: ...


_MISSING = object()


def _lookup(record: Mapping[str, Any], dotted_key: str) -> Any:
    current: Any = record
    for part in dotted_key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def matches(record: Mapping[str, Any], filter: Optional[Mapping[str, Any]]) -> bool:
    """Equality match on top-level or dotted (``metadata.email``) keys."""
    for key, expected in (filter or {}).items():
        value = _lookup(record, key)
        if value is _MISSING:
            return False
        # Relations stockées comme objet {"id": ...} ou comme id brut
        if isinstance(value, Mapping) and "id" in value and not isinstance(expected, Mapping):
            value = value["id"]
        if value != expected:
            return False
    return True


def _slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-") or "object"


class InMemoryRecordStore:
    """Thread-safe dict-backed implementation of :class:`RecordStore`."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def find(self, type: str, filter: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        with self._lock:
            found = [
                copy.deepcopy(r)
                for r in self._records.values()
                if r["type"] == type and matches(r, filter)
            ]
        return found

    def find_one(self, type: str, filter: Mapping[str, Any]) -> Dict[str, Any]:
        found = self.find(type, filter)
        if not found:
            raise RecordNotFound(f"no {type} matching {dict(filter)}")
        return found[0]

    def insert_one(self, type: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        if not type:
            raise RecordStoreError("type is required")
        now = utc_timestamp()
        record: Dict[str, Any] = {
            "id": uuid.uuid4().hex,
            "title": fields.get("title", ""),
            "status": fields.get("status", "published"),
            "metadata": copy.deepcopy(dict(fields.get("metadata") or {})),
            "type": type,
            "created_at": now,
            "modified_at": now,
        }
        with self._lock:
            slug = fields.get("slug") or self._unique_slug(type, _slugify(record["title"]))
            if any(r["type"] == type and r["slug"] == slug for r in self._records.values()):
                raise RecordStoreError(f"slug already exists: {slug}")
            record["slug"] = slug
            self._records[record["id"]] = record
            return copy.deepcopy(record)

    def update_one(self, id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            record = self._records.get(id)
            if record is None:
                raise RecordNotFound(f"no object with id {id}")
            for key, value in fields.items():
                if key == "metadata":
                    # Fusion partielle, comme l'API du CMS
                    record["metadata"].update(copy.deepcopy(dict(value or {})))
                elif key not in ("id", "type", "created_at"):
                    record[key] = value
            record["modified_at"] = utc_timestamp()
            return copy.deepcopy(record)

    def _unique_slug(self, type: str, base: str) -> str:
        taken = {r["slug"] for r in self._records.values() if r["type"] == type}
        slug, counter = base, 1
        while slug in taken:
            slug = f"{base}-{counter}"
            counter += 1
        return slug
