from __future__ import annotations

import logging
import random
import socket
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .constants import DEFAULT_TIMEOUT_MS

log = logging.getLogger(__name__)

Address = Tuple[str, int]


@dataclass(frozen=True, slots=True)
class Impairment:
    loss_rate: float = 0.0
    delay_ms: int = 0
    rng: random.Random = field(default_factory=random.Random, compare=False)

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and self.rng.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


def resolve_peer(host: str, port: int) -> Address:
    """Resolve a hostname or literal address once, IPv4 only."""
    infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_DGRAM)
    if not infos:
        raise OSError(f"cannot resolve {host!r}")
    addr = infos[0][4]
    return addr[0], addr[1]


class UdpEndpoint:
    def __init__(
        self,
        sock: socket.socket,
        impairment: Impairment | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        self.sock = sock
        self.impairment = impairment or Impairment()
        self.timeout_ms = timeout_ms

    @classmethod
    def listening(
        cls,
        host: str,
        port: int,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind((host, port))
        return cls(sock, impairment, timeout_ms)

    @classmethod
    def sending(
        cls,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        return cls(sock, impairment, timeout_ms)

    @property
    def address(self) -> Address:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def sendto(self, data: bytes, addr: Address) -> None:
        if self.impairment.should_drop():
            log.debug("impairment dropped outbound %d bytes", len(data))
            return
        self.impairment.sleep_if_needed()
        self.sock.sendto(data, addr)

    def poll(self, timeout_ms: Optional[int] = None) -> Optional[Tuple[bytes, Address]]:
        """Wait up to timeout_ms for one datagram; None means nothing arrived in time.

        Datagrams swallowed by the impairment do not extend the deadline.
        """
        wait_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        deadline = time.monotonic() + wait_ms / 1000.0
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            self.sock.settimeout(remaining)
            try:
                data, addr = self.sock.recvfrom(65535)
            except TimeoutError:
                return None
            if self.impairment.should_drop():
                log.debug("impairment dropped inbound %d bytes", len(data))
                continue
            self.impairment.sleep_if_needed()
            return data, (addr[0], addr[1])

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> "UdpEndpoint":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
