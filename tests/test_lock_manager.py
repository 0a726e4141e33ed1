import threading

import pytest

from src.lock_manager import LockManager


@pytest.fixture
def lock_manager(monkeypatch):
    monkeypatch.setenv("LOCK_PROVIDER", "memory")
    monkeypatch.setenv("LOCK_TIMEOUT", "1")
    return LockManager()


def test_acquire_and_release(lock_manager):
    with lock_manager.acquire_lock("synthetics-monitor:default/home") as acquired:
        assert acquired
    with lock_manager.acquire_lock("synthetics-monitor:default/home") as acquired:
        assert acquired


def test_same_key_is_exclusive(lock_manager):
    results = []

    with lock_manager.acquire_lock("synthetics-monitor:default/home"):
        def contender():
            with lock_manager.acquire_lock("synthetics-monitor:default/home", blocking=False) as acquired:
                results.append(acquired)

        thread = threading.Thread(target=contender)
        thread.start()
        thread.join()

    assert results == [False]


def test_different_keys_do_not_block(lock_manager):
    with lock_manager.acquire_lock("synthetics-monitor:default/a") as first:
        with lock_manager.acquire_lock("synthetics-monitor:default/b", blocking=False) as second:
            assert first and second


def test_lock_released_when_body_raises(lock_manager):
    with pytest.raises(RuntimeError):
        with lock_manager.acquire_lock("synthetics-monitor:default/home"):
            raise RuntimeError("handler failed")

    with lock_manager.acquire_lock("synthetics-monitor:default/home", blocking=False) as acquired:
        assert acquired
