from __future__ import annotations


class SyncError(Exception):
    pass


class TransportError(SyncError):
    """A datagram could not be sent or received."""


class EndpointClosed(TransportError):
    """The endpoint was closed, normally because its owner is shutting down."""


class DecodeError(SyncError, ValueError):
    pass


class MalformedMessage(DecodeError):
    """Raw bytes match neither the command grammar nor the chunk envelope."""


class FilesystemError(SyncError):
    def __init__(self, file_name: str, operation: str, reason: object):
        super().__init__(f"{operation} {file_name!r} failed: {reason}")
        self.file_name = file_name
        self.operation = operation


class ConfigError(SyncError):
    pass
