"""Tests for the Redis session store.

Most run against an in-process stand-in client; `TestLiveRedis` runs the real
Lua rotation against a server at TEST_REDIS_URL and is skipped without one.
"""

import json
import os
import threading

import pytest
import redis

from sessionauth.storage.models import CSRF_TOKEN_ATTR, PRINCIPAL_ATTR, Principal
from sessionauth.storage.redis_store import RedisSessionStore


class FakeRedis:
    """Implements the handful of commands the store issues."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.closed = False
        self.scripts = []

    def ping(self):
        return True

    def set(self, key, value, ex=None, nx=False, xx=False):
        if nx and key in self.data:
            return None
        if xx and key not in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = int(ex)
        return True

    def get(self, key):
        return self.data.get(key)

    def expire(self, key, seconds):
        if key not in self.data:
            return False
        self.ttls[key] = int(seconds)
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def pipeline(self):
        return FakePipeline(self)

    def register_script(self, script):
        self.scripts.append(script)

        def run(keys, args):
            old_key, new_key = keys
            if old_key not in self.data:
                return 0
            self.delete(old_key)
            self.set(new_key, args[0], ex=args[1])
            return 1

        return run

    def close(self):
        self.closed = True


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.calls = []

    def get(self, key):
        self.calls.append(("get", key))
        return self

    def expire(self, key, seconds):
        self.calls.append(("expire", key, seconds))
        return self

    def execute(self):
        results = []
        for name, *args in self.calls:
            results.append(getattr(self.client, name)(*args))
        self.calls = []
        return results


@pytest.fixture
def fake():
    return FakeRedis()


@pytest.fixture
def store(fake):
    return RedisSessionStore("redis://localhost:6379/0", max_inactive_seconds=90, client=fake)


def test_create_writes_json_with_ttl(store, fake):
    sess = store.create({CSRF_TOKEN_ATTR: "tok"})
    key = store._key(sess.id)

    assert json.loads(fake.data[key])["attributes"][CSRF_TOKEN_ATTR] == "tok"
    assert fake.ttls[key] == 90


def test_get_refreshes_ttl_and_decodes_principal(store, fake):
    sess = store.create({PRINCIPAL_ATTR: Principal("user", ("ROLE_USER",))})
    key = store._key(sess.id)
    fake.ttls[key] = 5

    loaded = store.get(sess.id)

    assert loaded.principal == Principal("user", ("ROLE_USER",))
    assert fake.ttls[key] == 90


def test_get_missing_returns_none(store):
    assert store.get("missing") is None
    assert store.get("") is None


def test_corrupt_payload_is_dropped(store, fake):
    fake.data[store._key("bad")] = "{not json"

    assert store.get("bad") is None
    assert store._key("bad") not in fake.data


def test_save_never_recreates_invalidated_session(store, fake):
    sess = store.create()
    store.invalidate(sess.id)
    sess.attributes[CSRF_TOKEN_ATTR] = "tok"
    store.save(sess)

    assert store.get(sess.id) is None


def test_rotate_replaces_key(store, fake):
    old = store.create({CSRF_TOKEN_ATTR: "tok"})

    new = store.rotate(old.id, {CSRF_TOKEN_ATTR: "tok"})

    assert new is not None
    assert store._key(old.id) not in fake.data
    assert store.get(new.id).csrf_token == "tok"


def test_second_rotation_of_same_session_loses(store):
    old = store.create()

    assert store.rotate(old.id) is not None
    assert store.rotate(old.id) is None


def test_close_closes_client(store, fake):
    store.verify_connection()
    store.close()
    assert fake.closed


def test_rotate_registers_atomic_script(store, fake):
    """The fake mirrors this script; pin the text it was registered with."""
    assert fake.scripts == [RedisSessionStore._ROTATE_SCRIPT]
    script = fake.scripts[0]
    assert "redis.call('EXISTS', old_key) == 0" in script
    assert script.index("'DEL', old_key") < script.index("'SET', new_key")
    assert "'EX', tonumber(ARGV[2])" in script


@pytest.fixture
def live_store():
    """Store against a real Redis (TEST_REDIS_URL); skipped when none is reachable."""
    url = os.getenv("TEST_REDIS_URL", "redis://localhost:6379/15")
    try:
        store = RedisSessionStore(url, max_inactive_seconds=90, socket_timeout=0.5)
        store.verify_connection()
    except redis.RedisError as exc:
        pytest.skip(f"redis not reachable at {url}: {exc}")
    yield store
    for key in store.client.scan_iter(match=f"{store.KEY_PREFIX}*"):
        store.client.delete(key)
    store.close()


class TestLiveRedis:
    def test_rotate_script_moves_session(self, live_store):
        old = live_store.create({CSRF_TOKEN_ATTR: "tok"})

        new = live_store.rotate(old.id, {CSRF_TOKEN_ATTR: "tok"})

        assert new is not None
        assert live_store.get(old.id) is None
        assert live_store.get(new.id).csrf_token == "tok"
        assert 0 < live_store.client.ttl(live_store._key(new.id)) <= 90

    def test_rotate_script_rejects_missing_session(self, live_store):
        assert live_store.rotate("does-not-exist") is None

    def test_concurrent_rotations_have_one_winner(self, live_store):
        old = live_store.create()
        barrier = threading.Barrier(6)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            rotated = live_store.rotate(old.id)
            with results_lock:
                results.append(rotated)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert live_store.get(winners[0].id) is not None

    def test_save_does_not_resurrect(self, live_store):
        sess = live_store.create()
        live_store.invalidate(sess.id)
        live_store.save(sess)

        assert live_store.get(sess.id) is None
