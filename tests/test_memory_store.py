"""Tests for the in-process session store."""

import threading
from datetime import timedelta

import pytest

from sessionauth.storage.memory import MemorySessionStore
from sessionauth.storage.models import CSRF_TOKEN_ATTR, PRINCIPAL_ATTR, Principal


@pytest.fixture
def store():
    return MemorySessionStore(max_inactive_seconds=60)


def _age(store, session_id, seconds):
    """Push a stored session's last access into the past."""
    stored = store.sessions[session_id]
    stored.last_accessed_at = stored.last_accessed_at - timedelta(seconds=seconds)


class TestCreateAndGet:
    def test_create_returns_unique_ids(self, store):
        ids = {store.create().id for _ in range(50)}
        assert len(ids) == 50

    def test_get_returns_copy(self, store):
        """Mutating a returned session does not touch the stored one until saved."""
        sess = store.create({"k": "v"})
        loaded = store.get(sess.id)
        loaded.attributes["k"] = "changed"

        assert store.get(sess.id).attributes["k"] == "v"

    def test_get_unknown_or_empty_id(self, store):
        assert store.get("missing") is None
        assert store.get("") is None

    def test_get_slides_idle_timeout(self, store):
        sess = store.create()
        _age(store, sess.id, 50)
        assert store.get(sess.id) is not None
        _age(store, sess.id, 50)
        # 50s since the last read, still within the 60s window
        assert store.get(sess.id) is not None

    def test_expired_session_is_gone(self, store):
        sess = store.create()
        _age(store, sess.id, 61)

        assert store.get(sess.id) is None
        assert sess.id not in store.sessions


class TestSaveAndInvalidate:
    def test_save_persists_attributes(self, store):
        sess = store.create()
        sess.attributes[CSRF_TOKEN_ATTR] = "tok"
        store.save(sess)

        assert store.get(sess.id).csrf_token == "tok"

    def test_save_does_not_resurrect_invalidated_session(self, store):
        sess = store.create()
        store.invalidate(sess.id)
        store.save(sess)

        assert store.get(sess.id) is None

    def test_invalidate_unknown_is_noop(self, store):
        store.invalidate("nope")
        assert len(store) == 0


class TestRotate:
    def test_rotate_moves_attributes_to_new_id(self, store):
        old = store.create({CSRF_TOKEN_ATTR: "tok"})
        principal = Principal("user", ("ROLE_USER",))

        new = store.rotate(old.id, {CSRF_TOKEN_ATTR: "tok", PRINCIPAL_ATTR: principal})

        assert new is not None
        assert new.id != old.id
        assert store.get(old.id) is None
        assert store.get(new.id).principal == principal

    def test_rotate_missing_session_returns_none(self, store):
        assert store.rotate("missing") is None
        assert len(store) == 0

    def test_rotate_expired_session_returns_none(self, store):
        old = store.create()
        _age(store, old.id, 120)

        assert store.rotate(old.id) is None
        assert len(store) == 0

    def test_concurrent_rotations_have_one_winner(self, store):
        """Only one of several racing logins on the same session gets a new id."""
        old = store.create()
        barrier = threading.Barrier(8)
        results = []
        results_lock = threading.Lock()

        def worker(n):
            barrier.wait()
            rotated = store.rotate(old.id, {"n": n})
            with results_lock:
                results.append(rotated)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert len(store) == 1
        assert store.get(winners[0].id) is not None


def test_purge_expired_removes_only_stale(store):
    fresh = store.create()
    stale = store.create()
    _age(store, stale.id, 61)

    assert store.purge_expired() == 1
    assert store.get(fresh.id) is not None
    assert len(store) == 1


class TestBackgroundSweep:
    """Sessions nobody reads again still leave the store once idle."""

    def test_create_sweeps_expired_sessions(self):
        store = MemorySessionStore(max_inactive_seconds=60, purge_interval_seconds=0)
        abandoned = [store.create().id for _ in range(10)]
        for sid in abandoned:
            _age(store, sid, 61)

        fresh = store.create()

        assert len(store) == 1
        assert store.get(fresh.id) is not None

    def test_sweep_is_throttled(self, store):
        stale = store.create()
        _age(store, stale.id, 61)

        store.create()
        # Within the purge interval the expired entry is left for later
        assert stale.id in store.sessions

        store._last_purge = store._last_purge - timedelta(seconds=store.purge_interval_seconds + 1)
        store.create()
        assert stale.id not in store.sessions

    def test_rotate_also_sweeps(self):
        store = MemorySessionStore(max_inactive_seconds=60, purge_interval_seconds=0)
        stale = store.create()
        live = store.create()
        _age(store, stale.id, 61)

        rotated = store.rotate(live.id)

        assert rotated is not None
        assert len(store) == 1
