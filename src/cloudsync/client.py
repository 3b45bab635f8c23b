"""Client side of the sync protocol.

``SyncClient`` runs four threads that share one ``SyncStateStore``:

* scanner: resends every file whose size or mtime changed since its last send
* command listener: applies DELETE/UPDATE commands arriving on the client port
* deletion watcher: turns local deletions into DELETE commands for the server
* status reporter: logs the store contents

Nothing is acknowledged. A chunk lost in transit is only repaired when the
file changes again or the client restarts and resyncs everything.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime
from typing import List, Optional

from .chunker import iter_file_chunks
from .constants import DEFAULT_CHUNK_SIZE, DEFAULT_REPORT_INTERVAL_S, DEFAULT_SCAN_INTERVAL_S
from .errors import EndpointClosed, FilesystemError, MalformedMessage, TransportError
from .fsutil import safe_join
from .net import Address, UdpEndpoint
from .packet import Chunk, Command, CommandVerb, decode
from .store import SyncStateStore, SyncStatus
from .watcher import DeletionEventStream

log = logging.getLogger(__name__)


class SyncClient:
    def __init__(
        self,
        udp: UdpEndpoint,
        server: Address,
        sync_dir: str | os.PathLike[str],
        *,
        store: Optional[SyncStateStore] = None,
        events: Optional[DeletionEventStream] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        scan_interval_s: float = DEFAULT_SCAN_INTERVAL_S,
        report_interval_s: float = DEFAULT_REPORT_INTERVAL_S,
    ):
        self.udp = udp
        self.server = server
        self.sync_dir = os.fspath(sync_dir)
        self.store = store if store is not None else SyncStateStore()
        self.events = events if events is not None else DeletionEventStream(self.sync_dir)
        self.chunk_size = chunk_size
        self.scan_interval_s = scan_interval_s
        self.report_interval_s = report_interval_s
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        log.info("client started; sync_dir=%s server=%s:%d", self.sync_dir, *self.server)
        self.events.start()
        workers = {
            "scanner": self.run_scanner,
            "commands": self.run_command_listener,
            "deletions": self.run_deletion_watcher,
            "status": self.run_status_reporter,
        }
        for name, target in workers.items():
            t = threading.Thread(target=target, name=f"cloudsync-{name}", daemon=True)
            t.start()
            self._threads.append(t)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self.events.close()
        self.udp.close()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads.clear()
        log.info("client stopped")

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def __enter__(self) -> "SyncClient":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # -- sending -----------------------------------------------------------

    def send_file(self, file_name: str) -> SyncStatus:
        """Send every chunk of ``file_name`` and return the status it was sent as.

        The file is stat'ed before reading, so a write that races the send
        leaves a stale status behind and the next scan picks the file up again.
        """
        path = safe_join(self.sync_dir, file_name)
        try:
            st = os.stat(path)
            count = 0
            for chunk in iter_file_chunks(path, file_name, self.chunk_size):
                self.udp.sendto(chunk.to_bytes(), self.server)
                count += 1
        except OSError as e:
            raise FilesystemError(file_name, "read", e) from e

        log.debug("sent %s; chunks=%d size=%d", file_name, count, st.st_size)
        return SyncStatus(file_size=st.st_size, last_modified=st.st_mtime_ns, in_sync=True)

    def sync_file(self, file_name: str) -> SyncStatus:
        status = self.send_file(file_name)
        self.store.put(file_name, status)
        return status

    def send_command(self, command: Command) -> None:
        self.udp.sendto(command.to_bytes(), self.server)

    def scan_once(self) -> List[str]:
        """Send every regular file that changed since it was last sent.

        Returns the names that were sent in full.
        """
        try:
            with os.scandir(self.sync_dir) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            log.error("cannot list %s: %s", self.sync_dir, e)
            return []

        sent = []
        for entry in entries:
            if self.stopping:
                break
            if entry.name.startswith("."):
                continue
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                st = entry.stat(follow_symlinks=False)
            except OSError as e:
                log.warning("cannot stat %s: %s", entry.name, e)
                continue
            if self.store.is_in_sync(entry.name, st.st_size, st.st_mtime_ns):
                continue

            log.info("syncing %s; size=%d", entry.name, st.st_size)
            try:
                self.sync_file(entry.name)
            except (FilesystemError, TransportError, ValueError) as e:
                log.error("sync of %s abandoned: %s", entry.name, e)
                continue
            sent.append(entry.name)
            log.info("synced %s", entry.name)
        return sent

    # -- commands ----------------------------------------------------------

    def delete_local(self, file_name: str) -> bool:
        """Remove ``file_name`` from the sync directory and forget its status.

        Returns False when the file was already gone.
        """
        path = safe_join(self.sync_dir, file_name)
        existed = True
        try:
            os.remove(path)
        except FileNotFoundError:
            existed = False
        except OSError as e:
            raise FilesystemError(file_name, "delete", e) from e
        self.store.remove(file_name)
        if existed:
            log.info("deleted %s", file_name)
        return existed

    def update_file(self, file_name: str) -> SyncStatus:
        status = self.sync_file(file_name)
        log.info("resent %s on request", file_name)
        return status

    def handle_command(self, command: Command) -> None:
        try:
            if command.verb is CommandVerb.DELETE:
                self.delete_local(command.file_name)
            elif command.verb is CommandVerb.UPDATE:
                self.update_file(command.file_name)
        except (FilesystemError, TransportError, ValueError) as e:
            log.error("%s %s failed: %s", command.verb.value, command.file_name, e)

    def handle_datagram(self, raw: bytes, addr: Address) -> None:
        try:
            message = decode(raw)
        except MalformedMessage as e:
            log.warning("dropping malformed datagram from %s:%d; %s", addr[0], addr[1], e)
            return
        if isinstance(message, Chunk):
            log.warning("ignoring chunk for %s from %s:%d", message.file_name, addr[0], addr[1])
            return
        log.info("received %s %s from %s:%d", message.verb.value, message.file_name, addr[0], addr[1])
        self.handle_command(message)

    def on_local_delete(self, file_name: str) -> None:
        """Tell the server ``file_name`` is gone and forget its status.

        Events arrive after the fact; if the name exists again (an editor
        saving via rename, say) nothing is done and the scanner resends it.
        The local file is never touched here.
        """
        if file_name.startswith("."):
            return
        try:
            path = safe_join(self.sync_dir, file_name)
        except FilesystemError as e:
            log.error("local deletion ignored: %s", e)
            return
        if os.path.lexists(path):
            log.debug("%s reappeared; deletion not propagated", file_name)
            return

        log.info("local deletion of %s", file_name)
        try:
            self.send_command(Command.delete(file_name))
        except (TransportError, ValueError) as e:
            log.error("DELETE %s not sent: %s", file_name, e)
        self.store.remove(file_name)

    # -- status ------------------------------------------------------------

    def report_status(self) -> List[str]:
        lines = []
        for file_name, status in self.store.snapshot():
            modified = datetime.fromtimestamp(status.last_modified / 1e9)
            line = (
                f"file={file_name} in_sync={status.in_sync} "
                f"size={status.file_size} modified={modified.isoformat(timespec='seconds')}"
            )
            log.info(line)
            lines.append(line)
        return lines

    # -- workers -----------------------------------------------------------

    def run_scanner(self) -> None:
        while not self.stopping:
            self.scan_once()
            self._stop.wait(self.scan_interval_s)

    def run_command_listener(self) -> None:
        while not self.stopping:
            try:
                raw, addr = self.udp.recvfrom()
            except TimeoutError:
                continue
            except EndpointClosed:
                break
            except TransportError as e:
                log.error("command receive failed: %s", e)
                continue
            self.handle_datagram(raw, addr)
        log.debug("command listener exiting")

    def run_deletion_watcher(self) -> None:
        for file_name in self.events:
            if self.stopping:
                break
            self.on_local_delete(file_name)
        log.debug("deletion watcher exiting")

    def run_status_reporter(self) -> None:
        while not self._stop.wait(self.report_interval_s):
            self.report_status()
