"""Wire format shared by the client and the server.

Two message kinds travel over the same datagram channel:

* ``Command`` is plain UTF-8 text, ``"<VERB> <file name>"``.
* ``Chunk`` is a binary envelope. It starts with a NUL byte, so it can never
  be mistaken for a command.

``decode`` tries the command grammar first and falls back to the envelope.
"""

from __future__ import annotations

import enum
import hashlib
import struct
from dataclasses import dataclass
from typing import Optional, Union

from .constants import HEADER_FORMAT, MAGIC, SHA1_LEN, VERSION
from .errors import MalformedMessage

HEADER_LEN = struct.calcsize(HEADER_FORMAT)
# bytes an envelope adds on top of the file name and the payload
ENVELOPE_OVERHEAD = HEADER_LEN + SHA1_LEN


class CommandVerb(str, enum.Enum):
    DELETE = "DELETE"
    UPDATE = "UPDATE"


@dataclass(frozen=True, slots=True)
class Command:
    verb: CommandVerb
    file_name: str

    def to_bytes(self) -> bytes:
        if not self.file_name or any(c.isspace() for c in self.file_name):
            raise ValueError(f"file name cannot be sent as a command: {self.file_name!r}")
        try:
            return f"{self.verb.value} {self.file_name}".encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValueError(f"file name is not valid UTF-8: {self.file_name!r}") from e

    @staticmethod
    def parse(raw: bytes) -> Optional["Command"]:
        """Return the command encoded in ``raw``, or None if it is not one."""
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None

        tokens = text.rstrip("\r\n").split(" ")
        if len(tokens) != 2:
            return None
        verb, file_name = tokens
        if not file_name or any(c.isspace() for c in file_name):
            return None
        try:
            return Command(CommandVerb(verb), file_name)
        except ValueError:
            return None

    @staticmethod
    def delete(file_name: str) -> "Command":
        return Command(CommandVerb.DELETE, file_name)

    @staticmethod
    def update(file_name: str) -> "Command":
        return Command(CommandVerb.UPDATE, file_name)


@dataclass(frozen=True, slots=True)
class Chunk:
    file_name: str
    block_number: int
    data: bytes
    declared_size: int

    def to_bytes(self) -> bytes:
        if not self.file_name:
            raise ValueError("chunk needs a file name")
        if self.declared_size != len(self.data):
            raise ValueError(
                f"declared size {self.declared_size} does not match payload length {len(self.data)}"
            )
        try:
            name = self.file_name.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValueError(f"file name is not valid UTF-8: {self.file_name!r}") from e
        try:
            header = struct.pack(
                HEADER_FORMAT,
                MAGIC,
                VERSION,
                len(name),
                self.block_number,
                self.declared_size,
            )
        except struct.error as e:
            raise ValueError(f"chunk header out of range: {e}") from e
        checksum = hashlib.sha1(header + name + self.data).digest()
        return header + checksum + name + self.data

    @staticmethod
    def from_bytes(raw: bytes) -> "Chunk":
        if len(raw) < ENVELOPE_OVERHEAD:
            raise MalformedMessage("datagram too small to be a chunk envelope")

        header = raw[:HEADER_LEN]
        checksum = raw[HEADER_LEN:ENVELOPE_OVERHEAD]
        magic, version, name_len, block_number, declared_size = struct.unpack(HEADER_FORMAT, header)

        if magic != MAGIC:
            raise MalformedMessage("bad magic")
        if version != VERSION:
            raise MalformedMessage(f"version mismatch: expected {VERSION}, got {version}")

        body = raw[ENVELOPE_OVERHEAD:]
        if name_len == 0 or len(body) < name_len:
            raise MalformedMessage("truncated file name")
        name, data = body[:name_len], body[name_len:]
        if len(data) != declared_size:
            raise MalformedMessage(f"declared size {declared_size} but payload is {len(data)} bytes")
        if hashlib.sha1(header + name + data).digest() != checksum:
            raise MalformedMessage("checksum mismatch")

        try:
            file_name = name.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage("file name is not valid UTF-8") from e

        return Chunk(file_name, block_number, data, declared_size)

    @staticmethod
    def create(file_name: str, block_number: int, data: bytes) -> "Chunk":
        return Chunk(file_name=file_name, block_number=block_number, data=data, declared_size=len(data))


Message = Union[Command, Chunk]


def encode(message: Message) -> bytes:
    return message.to_bytes()


def decode(raw: bytes) -> Message:
    command = Command.parse(raw)
    if command is not None:
        return command
    return Chunk.from_bytes(raw)
