"""In-process provider for local runs and tests."""

import fnmatch
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional
from .base import Provider, ProviderResult
from ..utils.errors import ProviderError, ResourceNotFoundError, StateError
from ..utils.logging import get_logger

logger = get_logger("providers.memory")


class _Fault:
    def __init__(self, operation: str, kind: str, error: ProviderError, times: Optional[int], match: Dict[str, Any]):
        self.operation = operation
        self.kind = kind
        self.error = error
        self.remaining = times
        self.match = match


class MemoryProvider(Provider):
    """
    Keeps objects in a dict, optionally mirrored to a JSON snapshot so
    consecutive CLI runs see the same objects.

    Data lookups are answered from seeded records; string filters support
    shell-style wildcards (``amzn2-*``).
    """

    name = "memory"

    def __init__(self, snapshot_path: Optional[str] = None, data: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._lock = threading.RLock()
        self._snapshot_path = Path(snapshot_path) if snapshot_path else None
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.records: Dict[str, List[Dict[str, Any]]] = {k: list(v) for k, v in (data or {}).items()}
        self.calls: List[tuple] = []
        self._faults: List[_Fault] = []
        self._counter = 0
        if self._snapshot_path and self._snapshot_path.exists():
            self._load_snapshot()

    def seed(self, kind: str, records: List[Dict[str, Any]]) -> None:
        """Make ``records`` available to ``query(kind, ...)``."""
        with self._lock:
            self.records.setdefault(kind, []).extend(records)

    def fail(self, operation: str, kind: str, error: ProviderError,
             times: Optional[int] = 1, match: Optional[Dict[str, Any]] = None) -> None:
        """Raise ``error`` on the next ``times`` calls of ``operation`` on ``kind`` (None = always)."""
        with self._lock:
            self._faults.append(_Fault(operation, kind, error, times, match or {}))

    def create(self, kind: str, attributes: Dict[str, Any]) -> ProviderResult:
        with self._lock:
            self._record("create", kind, None, attributes)
            self._counter += 1
            resource_id = f"{kind}-{self._counter:06d}"
            outputs = {"id": resource_id}
            self.objects[resource_id] = {"kind": kind, "attributes": dict(attributes), "outputs": outputs}
            self._save_snapshot()
            logger.debug(f"Created {kind} {resource_id}")
            return ProviderResult(id=resource_id, outputs=dict(outputs))

    def read(self, kind: str, resource_id: str) -> Dict[str, Any]:
        with self._lock:
            self._record("read", kind, resource_id, {})
            obj = self._get(kind, resource_id)
            return {**obj["attributes"], **obj["outputs"]}

    def update(self, kind: str, resource_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._record("update", kind, resource_id, attributes)
            obj = self._get(kind, resource_id)
            obj["attributes"] = dict(attributes)
            self._save_snapshot()
            return dict(obj["outputs"])

    def delete(self, kind: str, resource_id: str) -> None:
        with self._lock:
            self._record("delete", kind, resource_id, {})
            self._get(kind, resource_id)
            del self.objects[resource_id]
            self._save_snapshot()

    def query(self, kind: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self._record("query", kind, None, filters)
            return [dict(r) for r in self.records.get(kind, []) if _matches(r, filters)]

    def _get(self, kind: str, resource_id: str) -> Dict[str, Any]:
        obj = self.objects.get(resource_id)
        if obj is None or obj["kind"] != kind:
            raise ResourceNotFoundError(f"{kind} {resource_id} does not exist")
        return obj

    def _record(self, operation: str, kind: str, resource_id: Optional[str], attributes: Dict[str, Any]) -> None:
        self.calls.append((operation, kind, resource_id))
        for fault in self._faults:
            if fault.operation != operation or fault.kind != kind or fault.remaining == 0:
                continue
            if not _matches(attributes, fault.match):
                continue
            if fault.remaining is not None:
                fault.remaining -= 1
            raise fault.error

    def _load_snapshot(self) -> None:
        try:
            with open(self._snapshot_path, 'r', encoding='utf-8') as f:
                snapshot = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateError(f"Cannot read provider snapshot {self._snapshot_path}: {e}")
        self.objects = snapshot.get("objects", {})
        self._counter = snapshot.get("counter", 0)
        for kind, records in snapshot.get("records", {}).items():
            self.records.setdefault(kind, records)

    def _save_snapshot(self) -> None:
        if not self._snapshot_path:
            return
        tmp = self._snapshot_path.with_name(self._snapshot_path.name + ".tmp")
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump({"objects": self.objects, "counter": self._counter, "records": self.records}, f, indent=2)
        os.replace(tmp, self._snapshot_path)


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, expected in filters.items():
        actual = record.get(key)
        if isinstance(expected, str) and isinstance(actual, str) and any(c in expected for c in "*?["):
            if not fnmatch.fnmatchcase(actual, expected):
                return False
        elif actual != expected:
            return False
    return True
