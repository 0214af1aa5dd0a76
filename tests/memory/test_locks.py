"""Tests for KeyedLock."""

import threading

from memkeeper.memory import KeyedLock


def test_same_key_same_lock():
    locks = KeyedLock()
    assert locks.get("a") is locks.get("a")
    assert locks.get("a") is not locks.get("b")
    assert len(locks) == 2


def test_hold_is_reentrant():
    locks = KeyedLock()
    with locks.hold("a"):
        with locks.hold("a"):
            pass


def test_discard_forgets_lock():
    locks = KeyedLock()
    first = locks.get("a")
    locks.discard("a")
    locks.discard("missing")

    assert len(locks) == 0
    assert locks.get("a") is not first


def test_hold_serializes_threads():
    """Increments under the same key never interleave."""
    locks = KeyedLock()
    counter = {"value": 0}

    def work():
        for _ in range(200):
            with locks.hold("shared"):
                current = counter["value"]
                counter["value"] = current + 1

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert counter["value"] == 800
