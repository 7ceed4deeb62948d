"""Durable JSON state store with compare-and-swap saves and an advisory lock."""

import getpass
import json
import os
import shutil
import socket
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from filelock import SoftFileLock, Timeout
from pydantic import ValidationError
from .models import STATE_FORMAT_VERSION, StateDocument
from ..utils.errors import ConcurrentModificationError, StateError, StateLockError
from ..utils.logging import get_logger

logger = get_logger("state.store")


class LocalStateStore:
    """
    State document on the local filesystem.

    The lock is a ``SoftFileLock`` (``<path>.lock``) so a crashed run leaves
    it behind; ``<path>.lock.info`` records who holds it and since when.
    """

    def __init__(self, path: str, lock_timeout: float = 0, stale_lock_timeout: float = 3600):
        self.path = Path(path)
        self.lock_path = Path(f"{path}.lock")
        self.info_path = Path(f"{path}.lock.info")
        self.lock_timeout = lock_timeout
        self.stale_lock_timeout = stale_lock_timeout
        self._lock = SoftFileLock(str(self.lock_path), timeout=lock_timeout)
        self._lock_id: Optional[str] = None

    def load(self) -> StateDocument:
        """
        Load the full snapshot.

        Returns:
            The stored document, or an empty one (serial 0) if none exists

        Raises:
            StateError: If the file is unreadable or not a state document
        """
        if not self.path.exists():
            logger.debug(f"No state at {self.path}, starting empty")
            return StateDocument()
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateError(f"State file {self.path} is not valid JSON: {e}")
        except OSError as e:
            raise StateError(f"Error reading state file {self.path}: {e}")

        if data.get("format_version", STATE_FORMAT_VERSION) > STATE_FORMAT_VERSION:
            raise StateError(
                f"State file {self.path} uses format {data['format_version']}, "
                f"newer than supported version {STATE_FORMAT_VERSION}"
            )
        try:
            return StateDocument(**data)
        except ValidationError as e:
            raise StateError(f"State file {self.path} is malformed: {e}")

    def current_serial(self) -> int:
        if not self.path.exists():
            return 0
        return self.load().serial

    def save(self, document: StateDocument, expected_serial: int) -> StateDocument:
        """
        Atomically write ``document`` if nobody else saved since ``expected_serial``.

        Returns:
            The document as written (serial incremented)

        Raises:
            ConcurrentModificationError: If the on-disk serial differs
            StateError: If the write fails
        """
        found = self.current_serial()
        if found != expected_serial:
            raise ConcurrentModificationError(expected_serial, found)

        written = document.model_copy(update={"serial": expected_serial + 1})
        tmp_path = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(written.model_dump(mode="json"), f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            if self.path.exists():
                shutil.copy2(self.path, self.path.with_name(self.path.name + ".backup"))
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StateError(f"Failed to write state file {self.path}: {e}")
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        logger.debug(f"Saved state serial {written.serial} to {self.path}")
        return written

    def acquire(self, operation: str) -> Dict[str, Any]:
        """
        Take the exclusive lock.

        Raises:
            StateLockError: If another run holds it (includes holder details)
        """
        try:
            self._lock.acquire()
        except Timeout:
            info = self.lock_info() or {}
            holder = info.get("who", "unknown")
            since = info.get("created_at", "unknown time")
            raise StateLockError(
                f"State {self.path} is locked by {holder} ({info.get('operation', 'unknown operation')}) "
                f"since {since}, lock ID {info.get('id', 'unknown')}",
                info,
            )

        info = {
            "id": str(uuid.uuid4()),
            "operation": operation,
            "who": f"{_user()}@{socket.gethostname()}",
            "pid": os.getpid(),
            "created_at": datetime.now(timezone.utc).isoformat(),
            "created_ts": time.time(),
        }
        try:
            with open(self.info_path, 'w', encoding='utf-8') as f:
                json.dump(info, f, indent=2)
        except OSError as e:
            self._lock.release()
            raise StateError(f"Failed to write lock info {self.info_path}: {e}")
        self._lock_id = info["id"]
        logger.debug(f"Acquired state lock {info['id']} for {operation}")
        return info

    def release(self) -> None:
        if self._lock_id is None:
            return
        if self.info_path.exists():
            self.info_path.unlink()
        self._lock.release()
        logger.debug(f"Released state lock {self._lock_id}")
        self._lock_id = None

    @contextmanager
    def locked(self, operation: str) -> Iterator[Dict[str, Any]]:
        info = self.acquire(operation)
        try:
            yield info
        finally:
            self.release()

    def lock_info(self) -> Optional[Dict[str, Any]]:
        """Details of the current lock holder, or None when unlocked."""
        if not self.lock_path.exists():
            return None
        try:
            with open(self.info_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError):
            return {}

    def force_unlock(self, lock_id: Optional[str] = None, force: bool = False) -> bool:
        """
        Remove a lock left behind by another run.

        Without ``force`` only locks older than ``stale_lock_timeout`` are
        removed. ``lock_id``, when given, must match the holder's ID.

        Returns:
            True if a lock was removed, False if there was none

        Raises:
            StateLockError: If the lock is not stale (and not forced) or the ID differs
        """
        info = self.lock_info()
        if info is None:
            return False
        if lock_id and info.get("id") != lock_id:
            raise StateLockError(f"Lock ID mismatch: held lock is {info.get('id', 'unknown')}", info)
        age = time.time() - info.get("created_ts", 0)
        if not force and age < self.stale_lock_timeout:
            raise StateLockError(
                f"Lock {info.get('id', 'unknown')} is only {int(age)}s old "
                f"(stale after {int(self.stale_lock_timeout)}s); pass force to override",
                info,
            )
        for path in (self.info_path, self.lock_path):
            if path.exists():
                path.unlink()
        logger.warning(f"Force-released state lock {info.get('id', 'unknown')} held by {info.get('who', 'unknown')}")
        return True


def _user() -> str:
    try:
        return getpass.getuser()
    except Exception:
        return "unknown"
