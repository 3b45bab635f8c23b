from __future__ import annotations

import logging
import random
import socket
import time
from dataclasses import dataclass
from typing import Tuple

from .errors import EndpointClosed, TransportError

log = logging.getLogger(__name__)

Address = Tuple[str, int]


@dataclass(frozen=True, slots=True)
class Impairment:
    loss_rate: float = 0.0
    delay_ms: int = 0

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and random.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class UdpEndpoint:
    def __init__(self, sock: socket.socket, impairment: Impairment | None = None):
        self.sock = sock
        self.impairment = impairment or Impairment()
        self.closed = False

    @classmethod
    def listening(
        cls,
        host: str,
        port: int,
        timeout_ms: int = 0,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            raise TransportError(f"cannot bind {host}:{port}: {e}") from e
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock, impairment)

    @classmethod
    def sending(
        cls,
        timeout_ms: int = 0,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock, impairment)

    @property
    def address(self) -> Address:
        return self.sock.getsockname()

    def sendto(self, data: bytes, addr: Address) -> None:
        if self.closed:
            raise EndpointClosed("endpoint is closed")
        if self.impairment.should_drop():
            log.debug("dropped outbound %d bytes to %s:%d", len(data), *addr)
            return
        self.impairment.sleep_if_needed()
        try:
            self.sock.sendto(data, addr)
        except OSError as e:
            if self.closed:
                raise EndpointClosed("endpoint is closed") from e
            raise TransportError(f"send of {len(data)} bytes to {addr[0]}:{addr[1]} failed: {e}") from e

    def recvfrom(self, bufsize: int = 65535) -> Tuple[bytes, Address]:
        """Block for the next datagram.

        Raises ``TimeoutError`` when the socket timeout expires and
        ``EndpointClosed`` once ``close`` has been called, including from
        another thread while this call is blocked.
        """
        while True:
            if self.closed:
                raise EndpointClosed("endpoint is closed")
            try:
                data, addr = self.sock.recvfrom(bufsize)
            except TimeoutError:
                if self.closed:
                    raise EndpointClosed("endpoint is closed")
                raise
            except OSError as e:
                if self.closed:
                    raise EndpointClosed("endpoint is closed") from e
                raise TransportError(f"receive failed: {e}") from e
            if self.closed:
                raise EndpointClosed("endpoint is closed")
            if self.impairment.should_drop():
                continue
            self.impairment.sleep_if_needed()
            return data, addr

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # shutdown wakes a thread parked in recvfrom; close alone does not on Linux
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()
