import threading

import pytest

from snowlobby.locks import LockError, ReadWriteLock, ThreadManager, current_thread_id


def _in_thread(fn):
    result = {}

    def run():
        try:
            result["value"] = fn()
        except Exception as exc:  # noqa: BLE001 - recorded for the assertion
            result["error"] = exc

    thread = threading.Thread(target=run)
    thread.start()
    thread.join(5)
    return result


def _write_once(lock):
    def attempt():
        lock.write_lock()
        lock.write_unlock()
        return "done"

    return attempt


def _read_once(lock):
    def attempt():
        lock.read_lock()
        lock.read_unlock()
        return "done"

    return attempt


def test_read_unlock_without_read_fails():
    lock = ReadWriteLock()
    with pytest.raises(LockError, match="MULTIPLE_UNLOCK"):
        lock.read_unlock()


def test_write_unlock_with_reads_held_fails():
    lock = ReadWriteLock()
    lock.write_lock()
    lock.read_lock()
    with pytest.raises(LockError, match="INVALID_UNLOCK_ORDER"):
        lock.write_unlock()
    lock.read_unlock()
    lock.write_unlock()
    assert _in_thread(_write_once(lock)) == {"value": "done"}


def test_writer_times_out_while_reader_holds():
    lock = ReadWriteLock(timeout=0.05)
    lock.read_lock()
    result = _in_thread(lock.write_lock)
    assert isinstance(result.get("error"), LockError)
    lock.read_unlock()
    assert _in_thread(_write_once(lock)) == {"value": "done"}


def test_reader_times_out_while_other_thread_writes():
    lock = ReadWriteLock(timeout=0.05)
    lock.write_lock()
    result = _in_thread(_read_once(lock))
    assert "value" not in result
    assert isinstance(result.get("error"), LockError)
    lock.write_unlock()
    assert _in_thread(_read_once(lock)) == {"value": "done"}


def test_writer_is_reentrant_and_may_read():
    lock = ReadWriteLock(timeout=0.05)
    seen = []
    with lock.writing():
        with lock.writing():
            with lock.reading():
                seen.append("inside")
        blocked = _in_thread(_write_once(lock))
        assert isinstance(blocked.get("error"), LockError)
    assert seen == ["inside"]
    assert _in_thread(_write_once(lock)) == {"value": "done"}


def test_write_unlock_by_other_thread_fails():
    lock = ReadWriteLock(timeout=0.05)
    lock.write_lock()
    result = _in_thread(lock.write_unlock)
    assert isinstance(result.get("error"), LockError)
    assert _in_thread(_write_once(lock)).get("value") is None
    lock.write_unlock()
    assert _in_thread(_write_once(lock)) == {"value": "done"}


def test_many_readers_share_the_lock():
    lock = ReadWriteLock(timeout=1.0)
    barrier = threading.Barrier(2)
    readers = []
    guard = threading.Lock()

    def reader():
        with lock.reading():
            barrier.wait(timeout=2)
            with guard:
                readers.append(current_thread_id())

    with ThreadManager() as manager:
        manager.launch(reader)
        manager.launch(reader)
    assert len(readers) == 2
    assert len(set(readers)) == 2
    assert _in_thread(_write_once(lock)) == {"value": "done"}


def test_reading_releases_on_exception():
    lock = ReadWriteLock(timeout=0.5)
    with pytest.raises(ValueError):
        with lock.reading():
            raise ValueError("boom")
    assert _in_thread(_write_once(lock)) == {"value": "done"}


def test_thread_id_is_stable_per_thread():
    mine = current_thread_id()
    assert current_thread_id() == mine
    other = _in_thread(current_thread_id)["value"]
    assert other != mine


def test_thread_manager_runs_callbacks_with_distinct_ids():
    ids = []
    guard = threading.Lock()

    def record():
        with guard:
            ids.append(current_thread_id())

    mine = current_thread_id()
    manager = ThreadManager()
    for _ in range(3):
        manager.launch(record)
    manager.join()
    assert len(ids) == 3
    assert sorted(set(ids)) == sorted(ids)
    assert ids.count(mine) == 0