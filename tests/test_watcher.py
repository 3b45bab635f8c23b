from __future__ import annotations

import threading

from watchdog.events import DirDeletedEvent, FileDeletedEvent, FileMovedEvent

from cloudsync.watcher import DeletionEventStream

from conftest import wait_for


def collect(stream, seen):
    for name in stream:
        seen.append(name)


def test_handler_feeds_iterator(tmp_path):
    stream = DeletionEventStream(tmp_path)
    stream.handler.on_deleted(FileDeletedEvent(str(tmp_path / "a.txt")))
    stream.handler.on_deleted(DirDeletedEvent(str(tmp_path / "subdir")))
    stream.handler.on_deleted(FileDeletedEvent(str(tmp_path / "subdir" / "b.txt")))
    stream.handler.on_moved(FileMovedEvent(str(tmp_path / "c.txt"), str(tmp_path / "d.txt")))
    stream.close()

    assert list(stream) == ["a.txt", "c.txt"]


def test_close_ends_blocked_iteration(tmp_path):
    stream = DeletionEventStream(tmp_path)
    seen = []
    t = threading.Thread(target=collect, args=(stream, seen), daemon=True)
    t.start()
    stream.close()
    t.join(timeout=5)
    assert not t.is_alive()
    assert seen == []


def test_observer_reports_real_deletion(tmp_path):
    target = tmp_path / "gone.txt"
    target.write_text("bye")

    stream = DeletionEventStream(tmp_path)
    stream.start()
    seen = []
    t = threading.Thread(target=collect, args=(stream, seen), daemon=True)
    t.start()
    try:
        target.unlink()
        assert wait_for(lambda: "gone.txt" in seen)
    finally:
        stream.close()
        t.join(timeout=5)


def test_events_match_through_symlinked_directory(tmp_path):
    real = tmp_path / "real"
    real.mkdir()
    link = tmp_path / "link"
    link.symlink_to(real, target_is_directory=True)

    stream = DeletionEventStream(link)
    stream.publish(str(real / "a.txt"))
    stream.publish(str(link / "b.txt"))
    stream.close()

    assert list(stream) == ["a.txt", "b.txt"]
