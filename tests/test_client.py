from __future__ import annotations

import logging
import os

import pytest
from watchdog.events import FileMovedEvent

from cloudsync.client import SyncClient
from cloudsync.errors import TransportError
from cloudsync.net import UdpEndpoint
from cloudsync.packet import Chunk, Command, CommandVerb
from cloudsync.store import SyncStatus

from conftest import SERVER, RecordingEndpoint


@pytest.fixture
def sync_dir(tmp_path):
    d = tmp_path / "synced"
    d.mkdir()
    return d


@pytest.fixture
def client(endpoint, sync_dir):
    return SyncClient(endpoint, SERVER, sync_dir, chunk_size=4)


def test_scan_sends_new_file_and_records_status(client, endpoint, sync_dir):
    path = sync_dir / "notes.txt"
    path.write_bytes(b"0123456789")

    assert client.scan_once() == ["notes.txt"]

    chunks = endpoint.messages()
    assert all(isinstance(c, Chunk) for c in chunks)
    assert [c.block_number for c in chunks] == [0, 1, 2]
    assert b"".join(c.data for c in chunks) == b"0123456789"
    assert {addr for _, addr in endpoint.sent} == {SERVER}

    st = os.stat(path)
    assert client.store.get("notes.txt") == SyncStatus(st.st_size, st.st_mtime_ns, True)
    assert client.store.is_in_sync("notes.txt", st.st_size, st.st_mtime_ns)


def test_scan_skips_unchanged_file(client, endpoint, sync_dir):
    (sync_dir / "a.txt").write_bytes(b"abc")
    client.scan_once()
    sent = len(endpoint.sent)

    assert client.scan_once() == []
    assert len(endpoint.sent) == sent


def test_scan_resends_when_mtime_changes(client, endpoint, sync_dir):
    path = sync_dir / "a.txt"
    path.write_bytes(b"abc")
    client.scan_once()

    st = os.stat(path)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

    assert client.scan_once() == ["a.txt"]
    assert client.store.get("a.txt").last_modified == st.st_mtime_ns + 1_000_000_000


def test_scan_resends_when_size_changes(client, sync_dir):
    path = sync_dir / "a.txt"
    path.write_bytes(b"abc")
    client.scan_once()
    path.write_bytes(b"abcdef")
    assert client.scan_once() == ["a.txt"]
    assert client.store.get("a.txt").file_size == 6


def test_scan_ignores_hidden_files_and_directories(client, endpoint, sync_dir):
    (sync_dir / ".swap").write_bytes(b"tmp")
    (sync_dir / "nested").mkdir()
    (sync_dir / "nested" / "inner.txt").write_bytes(b"x")

    assert client.scan_once() == []
    assert endpoint.sent == []
    assert len(client.store) == 0


def test_scan_of_missing_directory_logs_and_continues(endpoint, tmp_path, caplog):
    client = SyncClient(endpoint, SERVER, tmp_path / "missing", chunk_size=4)
    with caplog.at_level(logging.ERROR):
        assert client.scan_once() == []
    assert "cannot list" in caplog.text


def test_failed_send_leaves_file_unsynced(sync_dir):
    class FailingEndpoint(RecordingEndpoint):
        def sendto(self, data, addr):
            raise TransportError("network unreachable")

    client = SyncClient(FailingEndpoint(), SERVER, sync_dir, chunk_size=4)
    (sync_dir / "a.txt").write_bytes(b"abcdef")
    (sync_dir / "b.txt").write_bytes(b"b")

    assert client.scan_once() == []
    assert len(client.store) == 0


def test_non_utf8_name_does_not_stop_the_scan(client, endpoint, sync_dir):
    try:
        fd = os.open(os.path.join(os.fsencode(sync_dir), b"bad\xff.txt"), os.O_WRONLY | os.O_CREAT)
    except OSError:
        pytest.skip("filesystem rejects non-UTF-8 names")
    os.write(fd, b"x")
    os.close(fd)
    (sync_dir / "good.txt").write_bytes(b"good")

    assert client.scan_once() == ["good.txt"]
    assert [c.file_name for c in endpoint.messages()] == ["good.txt"]
    assert len(client.store) == 1


def test_delete_command_removes_file_and_entry(client, sync_dir):
    (sync_dir / "old.log").write_bytes(b"log")
    client.scan_once()
    assert "old.log" in client.store

    client.handle_command(Command.delete("old.log"))

    assert not (sync_dir / "old.log").exists()
    assert "old.log" not in client.store


def test_delete_command_for_missing_file_is_noop(client):
    assert client.delete_local("never-there.txt") is False
    client.handle_command(Command.delete("never-there.txt"))


def test_update_command_resends_even_when_in_sync(client, endpoint, sync_dir):
    (sync_dir / "a.txt").write_bytes(b"abcdef")
    client.scan_once()
    endpoint.sent.clear()

    client.handle_datagram(b"UPDATE a.txt", ("127.0.0.1", 8888))

    assert [c.block_number for c in endpoint.messages()] == [0, 1]


def test_update_of_missing_file_is_logged(client, endpoint, caplog):
    with caplog.at_level(logging.ERROR):
        client.handle_command(Command.update("ghost.txt"))
    assert endpoint.sent == []
    assert "ghost.txt" in caplog.text


def test_malformed_and_chunk_datagrams_are_ignored(client, endpoint, sync_dir, caplog):
    (sync_dir / "a.txt").write_bytes(b"a")
    with caplog.at_level(logging.WARNING):
        client.handle_datagram(b"FOO", ("127.0.0.1", 9))
        client.handle_datagram(b"RENAME a.txt", ("127.0.0.1", 9))
        client.handle_datagram(Chunk.create("a.txt", 0, b"zz").to_bytes(), ("127.0.0.1", 9))
    assert (sync_dir / "a.txt").read_bytes() == b"a"
    assert endpoint.sent == []
    assert "malformed" in caplog.text


def test_command_escaping_sync_dir_is_rejected(client, tmp_path):
    victim = tmp_path / "victim.txt"
    victim.write_bytes(b"x")
    client.handle_datagram(b"DELETE ../victim.txt", ("127.0.0.1", 9))
    assert victim.exists()


def test_local_delete_notifies_server_and_evicts_entry(client, endpoint, sync_dir):
    (sync_dir / "old.log").write_bytes(b"log")
    client.scan_once()
    endpoint.sent.clear()
    (sync_dir / "old.log").unlink()

    client.on_local_delete("old.log")

    assert endpoint.messages() == [Command(CommandVerb.DELETE, "old.log")]
    assert "old.log" not in client.store


def test_local_delete_of_unsendable_name_still_evicts(client, endpoint, sync_dir):
    (sync_dir / "two words.txt").write_bytes(b"x")
    client.scan_once()
    (sync_dir / "two words.txt").unlink()

    endpoint.sent.clear()
    client.on_local_delete("two words.txt")

    assert endpoint.sent == []
    assert "two words.txt" not in client.store


def test_rename_save_keeps_new_file(client, endpoint, sync_dir):
    path = sync_dir / "a.txt"
    path.write_bytes(b"first draft")
    client.scan_once()
    endpoint.sent.clear()

    # editors save by renaming the old copy away and writing a fresh one
    path.rename(sync_dir / "a.txt~")
    path.write_bytes(b"second draft")
    client.events.handler.on_moved(FileMovedEvent(str(path), str(sync_dir / "a.txt~")))
    client.events.close()
    client.run_deletion_watcher()

    assert path.read_bytes() == b"second draft"
    assert endpoint.sent == []
    assert "a.txt" in client.store
    assert "a.txt" in client.scan_once()


def test_local_delete_leaves_sync_dir_alone(client, endpoint, sync_dir):
    (sync_dir / "a.txt").write_bytes(b"a")
    client.scan_once()
    endpoint.sent.clear()
    (sync_dir / "a.txt").unlink()
    (sync_dir / "b.txt").write_bytes(b"b")

    client.on_local_delete("a.txt")

    assert endpoint.messages() == [Command.delete("a.txt")]
    assert (sync_dir / "b.txt").exists()


def test_report_status(client, sync_dir, caplog):
    (sync_dir / "b.txt").write_bytes(b"bb")
    (sync_dir / "a.txt").write_bytes(b"a")
    client.scan_once()

    with caplog.at_level(logging.INFO):
        lines = client.report_status()

    assert len(lines) == 2
    assert lines[0].startswith("file=a.txt in_sync=True size=1")
    assert lines[1].startswith("file=b.txt in_sync=True size=2")


def test_deletion_watcher_uses_event_stream(client, endpoint, sync_dir):
    client.events.publish(str(sync_dir / "x.txt"))
    client.events.close()
    client.run_deletion_watcher()
    assert endpoint.messages() == [Command.delete("x.txt")]


def test_stop_unblocks_every_worker(sync_dir):
    udp = UdpEndpoint.listening("127.0.0.1", 0, timeout_ms=100)
    client = SyncClient(
        udp,
        SERVER,
        sync_dir,
        chunk_size=1024,
        scan_interval_s=60,
        report_interval_s=60,
    )
    client.start()
    threads = list(client._threads)
    assert all(t.is_alive() for t in threads)

    client.stop()

    assert not any(t.is_alive() for t in threads)
    assert udp.closed
