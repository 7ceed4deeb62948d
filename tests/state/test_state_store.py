"""Tests for the state store, locking and sessions."""

import json
import threading
import time
import pytest
from converge.state.models import ResourceState, StateDocument, hash_attributes
from converge.state.session import StateSession
from converge.state.store import LocalStateStore
from converge.utils.errors import ConcurrentModificationError, StateError, StateLockError


def _entry(provider_id, **attributes):
    return ResourceState(kind="bucket", provider_id=provider_id, attributes=attributes,
                         input_hash=hash_attributes(attributes))


@pytest.fixture
def state_path(tmp_path):
    return str(tmp_path / "converge.state.json")


class TestLocalStateStore:
    """Test loading and compare-and-swap saves."""

    def test_missing_file_loads_empty(self, state_path):
        document = LocalStateStore(state_path).load()
        assert document.serial == 0
        assert document.resources == {}

    def test_save_increments_serial(self, state_path):
        store = LocalStateStore(state_path)
        written = store.save(StateDocument(resources={"bucket.a": _entry("b-1")}), expected_serial=0)

        assert written.serial == 1
        loaded = store.load()
        assert loaded.serial == 1
        assert loaded.resources["bucket.a"].provider_id == "b-1"
        assert loaded.lineage == written.lineage

    def test_previous_version_is_kept_as_backup(self, state_path):
        store = LocalStateStore(state_path)
        first = store.save(StateDocument(), expected_serial=0)
        store.save(first, expected_serial=1)

        with open(state_path + ".backup", encoding="utf-8") as f:
            assert json.load(f)["serial"] == 1

    def test_stale_serial_is_rejected(self, state_path):
        store = LocalStateStore(state_path)
        store.save(StateDocument(), expected_serial=0)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            store.save(StateDocument(resources={"bucket.a": _entry("b-1")}), expected_serial=0)

        assert (exc_info.value.expected, exc_info.value.found) == (0, 1)
        assert store.load().resources == {}

    def test_invalid_json(self, state_path):
        with open(state_path, "w", encoding="utf-8") as f:
            f.write("{not json")
        with pytest.raises(StateError):
            LocalStateStore(state_path).load()

    def test_newer_format_version(self, state_path):
        with open(state_path, "w", encoding="utf-8") as f:
            json.dump({"format_version": 99, "serial": 1}, f)
        with pytest.raises(StateError) as exc_info:
            LocalStateStore(state_path).load()
        assert "99" in str(exc_info.value)


class TestLocking:
    """Test the exclusive state lock."""

    def test_second_holder_is_rejected_with_holder_info(self, state_path):
        first = LocalStateStore(state_path)
        second = LocalStateStore(state_path)
        info = first.acquire("apply")

        with pytest.raises(StateLockError) as exc_info:
            second.acquire("plan")

        assert exc_info.value.lock_info["id"] == info["id"]
        assert exc_info.value.lock_info["operation"] == "apply"
        assert info["id"] in str(exc_info.value)
        first.release()
        second.acquire("plan")
        second.release()

    def test_exactly_one_concurrent_acquire_succeeds(self, state_path):
        stores = [LocalStateStore(state_path) for _ in range(4)]
        barrier = threading.Barrier(len(stores))
        outcomes = []

        def contend(store):
            barrier.wait()
            try:
                store.acquire("apply")
                outcomes.append("acquired")
            except StateLockError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=contend, args=(s,)) for s in stores]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("acquired") == 1
        assert outcomes.count("rejected") == 3

    def test_lock_info_none_when_unlocked(self, state_path):
        store = LocalStateStore(state_path)
        assert store.lock_info() is None
        with store.locked("apply") as info:
            assert store.lock_info()["id"] == info["id"]
        assert store.lock_info() is None

    def test_force_unlock_stale_lock(self, state_path):
        crashed = LocalStateStore(state_path)
        crashed.acquire("apply")
        info_path = state_path + ".lock.info"
        with open(info_path, encoding="utf-8") as f:
            info = json.load(f)
        info["created_ts"] = time.time() - 7200
        with open(info_path, "w", encoding="utf-8") as f:
            json.dump(info, f)

        operator = LocalStateStore(state_path, stale_lock_timeout=3600)
        assert operator.force_unlock() is True
        assert operator.lock_info() is None
        operator.acquire("apply")
        operator.release()

    def test_force_unlock_refuses_fresh_lock(self, state_path):
        holder = LocalStateStore(state_path)
        holder.acquire("apply")
        operator = LocalStateStore(state_path)

        with pytest.raises(StateLockError):
            operator.force_unlock()
        assert operator.force_unlock(force=True) is True

    def test_force_unlock_checks_lock_id(self, state_path):
        holder = LocalStateStore(state_path)
        holder.acquire("apply")
        with pytest.raises(StateLockError):
            LocalStateStore(state_path).force_unlock("wrong-id", force=True)
        holder.release()

    def test_force_unlock_without_lock(self, state_path):
        assert LocalStateStore(state_path).force_unlock() is False


class TestStateSession:
    """Test the per-run session."""

    def test_record_persists_every_change(self, state_path):
        store = LocalStateStore(state_path)
        with StateSession(store, "apply") as session:
            session.record("bucket.a", _entry("b-1"))
            assert store.load().serial == 1
            session.record("bucket.b", _entry("b-2"))
            assert store.load().serial == 2
            session.record("bucket.a", None)

        document = store.load()
        assert document.serial == 3
        assert list(document.resources) == ["bucket.b"]

    def test_session_holds_the_lock(self, state_path):
        store = LocalStateStore(state_path)
        with StateSession(store, "apply"):
            with pytest.raises(StateLockError):
                StateSession(LocalStateStore(state_path), "plan").__enter__()
        assert store.lock_info() is None

    def test_lock_released_when_body_raises(self, state_path):
        store = LocalStateStore(state_path)
        with pytest.raises(RuntimeError):
            with StateSession(store, "apply"):
                raise RuntimeError("boom")
        assert store.lock_info() is None

    def test_guarded_removal_keeps_replacement(self, state_path):
        store = LocalStateStore(state_path)
        with StateSession(store, "apply") as session:
            session.record("bucket.a", _entry("b-new"))
            session.record("bucket.a", None, expected_provider_id="b-old")
            assert session.resources["bucket.a"].provider_id == "b-new"

    def test_depose_keeps_replaced_entry_until_deleted(self, state_path):
        store = LocalStateStore(state_path)
        with StateSession(store, "apply") as session:
            session.record("bucket.a", _entry("b-old"))
            session.record("bucket.a", _entry("b-new"), depose=True)

        persisted = store.load()
        assert persisted.resources["bucket.a"].provider_id == "b-new"
        assert [d.provider_id for d in persisted.deposed["bucket.a"]] == ["b-old"]

        with StateSession(store, "apply") as session:
            session.record("bucket.a", None, expected_provider_id="b-old")

        persisted = store.load()
        assert persisted.resources["bucket.a"].provider_id == "b-new"
        assert persisted.deposed == {}

    def test_concurrent_writer_detected(self, state_path):
        store = LocalStateStore(state_path)
        with StateSession(store, "apply", lock=False) as session:
            LocalStateStore(state_path).save(StateDocument(), expected_serial=0)
            with pytest.raises(ConcurrentModificationError):
                session.record("bucket.a", _entry("b-1"))

    def test_snapshot_is_independent(self, state_path):
        store = LocalStateStore(state_path)
        with StateSession(store, "plan") as session:
            snapshot = session.snapshot()
            session.record("bucket.a", _entry("b-1"))
            assert snapshot.resources == {}
