# backend/tests/test_store_memory.py

import threading
import time
from datetime import timedelta

from conftest import BASE_TIME
from studybuddy.store.memory import InMemoryStore, ReadWriteLock
from studybuddy.store.schemas import Notification, NotificationKind, Task


def test_returned_values_are_copies(memory_store: InMemoryStore) -> None:
    original = Task(id="t1", user_id="u1", title="Essay", due_at=BASE_TIME)
    created = memory_store.create_task(original)

    # 呼び出し側の変更がストアに漏れないこと
    original.title = "changed by caller"
    created.title = "changed via return value"
    memory_store.get_task("t1").title = "changed via get"

    assert memory_store.get_task("t1").title == "Essay"


def test_concurrent_creates_are_all_kept(memory_store: InMemoryStore) -> None:
    def worker(prefix: str) -> None:
        for i in range(50):
            memory_store.create_notification(
                Notification(
                    id=f"{prefix}-{i}",
                    user_id="u1",
                    message="m",
                    kind=NotificationKind.TASK_DUE,
                    reference_id=f"{prefix}-{i}",
                    created_at=BASE_TIME - timedelta(hours=2),
                )
            )
            memory_store.list_stale_unread(timedelta(hours=1), now=BASE_TIME)

    threads = [threading.Thread(target=worker, args=(f"w{n}",)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(memory_store.list_notifications("u1")) == 200


def test_writer_waits_for_active_reader() -> None:
    lock = ReadWriteLock()
    order = []
    reader_entered = threading.Event()

    def reader() -> None:
        with lock.read():
            reader_entered.set()
            time.sleep(0.05)
            order.append("read-done")

    def writer() -> None:
        reader_entered.wait()
        with lock.write():
            order.append("write")

    threads = [threading.Thread(target=reader), threading.Thread(target=writer)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert order == ["read-done", "write"]


def test_readers_share_the_lock() -> None:
    lock = ReadWriteLock()
    both_inside = threading.Barrier(2, timeout=5)

    def reader() -> None:
        with lock.read():
            # 2 つの reader が同時に入れなければ Barrier がタイムアウトする
            both_inside.wait()

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert not both_inside.broken
