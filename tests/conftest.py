from __future__ import annotations

import queue
import time
from typing import Callable, List, Tuple

import pytest

from cloudsync.errors import EndpointClosed
from cloudsync.packet import Message, decode

SERVER = ("127.0.0.1", 8888)


class RecordingEndpoint:
    """In-memory stand-in for UdpEndpoint that keeps every datagram sent."""

    def __init__(self) -> None:
        self.sent: List[Tuple[bytes, Tuple[str, int]]] = []
        self.inbox: "queue.Queue[Tuple[bytes, Tuple[str, int]]]" = queue.Queue()
        self.closed = False

    @property
    def address(self) -> Tuple[str, int]:
        return ("127.0.0.1", 5678)

    def sendto(self, data: bytes, addr: Tuple[str, int]) -> None:
        if self.closed:
            raise EndpointClosed("endpoint is closed")
        self.sent.append((data, addr))

    def recvfrom(self, bufsize: int = 65535) -> Tuple[bytes, Tuple[str, int]]:
        if self.closed:
            raise EndpointClosed("endpoint is closed")
        try:
            return self.inbox.get(timeout=0.05)
        except queue.Empty:
            raise TimeoutError from None

    def close(self) -> None:
        self.closed = True

    def messages(self) -> List[Message]:
        return [decode(data) for data, _ in self.sent]


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def endpoint() -> RecordingEndpoint:
    return RecordingEndpoint()
