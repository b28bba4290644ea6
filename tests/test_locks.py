import threading

import pytest

from minikernel.kprintf import KernelPanic
from minikernel.locks import SleepLock, SpinLock


def _holding_in_other_thread(lock):
    result = []
    t = threading.Thread(target=lambda: result.append(lock.holding()))
    t.start()
    t.join(2)
    return result


def test_spinlock_acquire_release():
    lock = SpinLock("bcache")
    assert not lock.holding()
    lock.acquire()
    assert lock.holding()
    lock.release()
    assert not lock.holding()
    assert lock.name == "bcache"


def test_spinlock_recursive_acquire_panics():
    lock = SpinLock("kmem")
    lock.acquire()
    with pytest.raises(KernelPanic, match="acquire"):
        lock.acquire()
    lock.release()
    assert not lock.locked


def test_spinlock_release_unheld_panics():
    lock = SpinLock("kmem")
    with pytest.raises(KernelPanic, match="release"):
        lock.release()


def test_spinlock_context_manager():
    lock = SpinLock("log")
    with lock:
        assert lock.holding()
    assert not lock.holding()


def test_spinlock_not_held_by_other_thread():
    lock = SpinLock("itable")
    with lock:
        assert _holding_in_other_thread(lock) == [False]


def test_spinlock_mutual_exclusion():
    lock = SpinLock("counter")
    counter = {"n": 0}
    held = []
    held_guard = threading.Lock()

    def work():
        seen = []
        for _ in range(2000):
            with lock:
                seen.append(lock.holding())
                value = counter["n"]
                counter["n"] = value + 1
        with held_guard:
            held.extend(seen)

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    assert counter["n"] == 4 * 2000
    assert len(held) == 4 * 2000
    assert all(held)
    assert not lock.locked
    assert not lock.holding()


def test_sleeplock_holding():
    lock = SleepLock("buffer")
    with lock:
        assert lock.holding()
        assert lock.owner == threading.get_ident()
        assert _holding_in_other_thread(lock) == [False]
    assert not lock.holding()
    assert lock.owner is None


def test_sleeplock_blocks_other_thread_until_release():
    lock = SleepLock("inode")
    lock.acquire()
    acquired = threading.Event()
    observed = {}

    def worker():
        lock.acquire()
        observed["holding"] = lock.holding()
        observed["owner_is_worker"] = lock.owner == threading.get_ident()
        acquired.set()
        lock.release()

    t = threading.Thread(target=worker)
    t.start()
    assert not acquired.wait(0.1)
    assert lock.holding()
    assert lock.owner == threading.get_ident()
    lock.release()
    assert acquired.wait(2)
    t.join(2)
    assert observed == {"holding": True, "owner_is_worker": True}
    assert not lock.locked
    assert lock.owner is None