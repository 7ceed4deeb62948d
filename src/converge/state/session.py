"""One run's exclusive view of state: acquire, load, mutate, save, release."""

import threading
from typing import Any, Dict, Optional
from .models import ResourceState, StateDocument
from .store import LocalStateStore
from ..utils.logging import get_logger

logger = get_logger("state.session")


class StateSession:
    """
    Holds the lock for the duration of a run and persists every change
    immediately, so a run that dies part way leaves accurate state behind.

    Use as a context manager; ``record`` is safe to call from worker threads.
    """

    def __init__(self, store: LocalStateStore, operation: str, lock: bool = True):
        self.store = store
        self.operation = operation
        self.lock = lock
        self.document: Optional[StateDocument] = None
        self._serial = 0
        self._mutex = threading.Lock()

    def __enter__(self) -> "StateSession":
        if self.lock:
            self.store.acquire(self.operation)
        try:
            self.document = self.store.load()
        except Exception:
            if self.lock:
                self.store.release()
            raise
        self._serial = self.document.serial
        logger.debug(f"Opened state session for {self.operation} at serial {self._serial}")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.lock:
            self.store.release()

    @property
    def resources(self) -> Dict[str, ResourceState]:
        return self.document.resources

    def snapshot(self) -> StateDocument:
        """Deep copy of the in-memory document."""
        with self._mutex:
            return self.document.model_copy(deep=True)

    def record(self, address: str, entry: Optional[ResourceState], expected_provider_id: Optional[str] = None,
               depose: bool = False) -> None:
        """
        Set (or with ``entry=None`` remove) one resource and persist.

        With ``depose`` the entry being replaced is kept under ``deposed`` in
        the same save, so the old object stays tracked until it is deleted.

        ``expected_provider_id`` guards removal: the entry is only dropped if it
        still refers to that object, so deleting a deposed object never drops
        its replacement. A deposed object with that id is dropped as well.
        """
        with self._mutex:
            resources = dict(self.document.resources)
            deposed = {key: list(objects) for key, objects in self.document.deposed.items()}
            current = resources.get(address)
            if entry is None:
                if current is not None and (expected_provider_id is None or current.provider_id == expected_provider_id):
                    del resources[address]
                if expected_provider_id is not None and address in deposed:
                    deposed[address] = [d for d in deposed[address] if d.provider_id != expected_provider_id]
                    if not deposed[address]:
                        del deposed[address]
            else:
                if depose and current is not None and current.provider_id != entry.provider_id:
                    deposed.setdefault(address, []).append(current)
                    logger.debug(f"Deposed {address} object {current.provider_id}")
                resources[address] = entry
            self.document = self.document.model_copy(update={"resources": resources, "deposed": deposed})
            self._persist()

    def set_outputs(self, outputs: Dict[str, Any]) -> None:
        with self._mutex:
            self.document = self.document.model_copy(update={"outputs": outputs})
            self._persist()

    def replace_resources(self, resources: Dict[str, ResourceState]) -> None:
        """Swap in refreshed resources without persisting (saved with the next change)."""
        with self._mutex:
            self.document = self.document.model_copy(update={"resources": resources})

    def save(self) -> None:
        """Persist the in-memory document as it stands."""
        with self._mutex:
            self._persist()

    def _persist(self) -> None:
        self.document = self.store.save(self.document, expected_serial=self._serial)
        self._serial = self.document.serial
