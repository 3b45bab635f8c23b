from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .constants import DEFAULT_CHUNK_SIZE
from .errors import EndpointClosed, FilesystemError, MalformedMessage, TransportError
from .fsutil import safe_join
from .net import Address, UdpEndpoint
from .packet import Chunk, Command, CommandVerb, decode

log = logging.getLogger(__name__)


@dataclass(slots=True)
class ServerStats:
    datagrams: int = 0
    chunks_written: int = 0
    deletes: int = 0
    malformed: int = 0
    errors: int = 0


class StorageServer:
    """Receives chunks and DELETE commands and applies them to ``storage_dir``.

    Each chunk is written at ``block_number * chunk_size``, so duplicated or
    reordered chunks land in the same place and the file converges on the
    sender's bytes once every block has arrived at least once. The chunk size
    must match the one the client sends with. A file that shrinks to an exact
    multiple of the chunk size keeps its old tail.
    """

    def __init__(
        self,
        udp: UdpEndpoint,
        storage_dir: str | os.PathLike[str],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.udp = udp
        self.storage_dir = os.fspath(storage_dir)
        self.chunk_size = chunk_size
        self.stats = ServerStats()

    def serve_forever(self) -> ServerStats:
        log.info("server listening on %s:%d; storage_dir=%s", *self.udp.address, self.storage_dir)
        while True:
            try:
                raw, addr = self.udp.recvfrom()
            except TimeoutError:
                continue
            except EndpointClosed:
                break
            except TransportError as e:
                log.error("receive failed: %s", e)
                continue
            self.handle_datagram(raw, addr)
        log.info("server stopped; %s", self.stats)
        return self.stats

    def stop(self) -> None:
        self.udp.close()

    def handle_datagram(self, raw: bytes, addr: Address | None = None) -> None:
        self.stats.datagrams += 1
        try:
            message = decode(raw)
        except MalformedMessage as e:
            self.stats.malformed += 1
            log.warning("dropping malformed datagram of %d bytes from %s; %s", len(raw), _peer(addr), e)
            return

        try:
            if isinstance(message, Chunk):
                self.write_chunk(message)
            else:
                self.handle_command(message)
        except FilesystemError as e:
            self.stats.errors += 1
            log.error("%s", e)

    def handle_command(self, command: Command) -> None:
        if command.verb is CommandVerb.DELETE:
            self.delete_file(command.file_name)
        else:
            log.info("ignoring %s %s; only clients act on it", command.verb.value, command.file_name)

    def delete_file(self, file_name: str) -> bool:
        path = safe_join(self.storage_dir, file_name)
        try:
            os.remove(path)
        except FileNotFoundError:
            log.debug("delete of missing %s ignored", file_name)
            return False
        except OSError as e:
            raise FilesystemError(file_name, "delete", e) from e
        self.stats.deletes += 1
        log.info("deleted %s", file_name)
        return True

    def write_chunk(self, chunk: Chunk) -> None:
        if chunk.declared_size > self.chunk_size:
            raise FilesystemError(
                chunk.file_name,
                "write",
                f"block of {chunk.declared_size} bytes exceeds chunk size {self.chunk_size}",
            )
        path = safe_join(self.storage_dir, chunk.file_name)
        offset = chunk.block_number * self.chunk_size
        try:
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
            with os.fdopen(fd, "r+b") as f:
                f.seek(offset)
                f.write(chunk.data)
                if len(chunk.data) < self.chunk_size:
                    # a short block is the last one; drop the tail of an older, longer copy
                    f.truncate(offset + len(chunk.data))
                size = f.seek(0, os.SEEK_END)
        except OSError as e:
            raise FilesystemError(chunk.file_name, "write", e) from e

        self.stats.chunks_written += 1
        log.debug("wrote %s block=%d bytes=%d offset=%d", chunk.file_name, chunk.block_number, len(chunk.data), offset)

        # blocks may arrive in any order, so this is a hint only
        total_blocks = max(1, -(-size // self.chunk_size))
        if chunk.block_number == total_blocks - 1:
            log.info("file received: %s; size=%d blocks=%d", chunk.file_name, size, total_blocks)


def _peer(addr: Address | None) -> str:
    if addr is None:
        return "unknown"
    return f"{addr[0]}:{addr[1]}"
