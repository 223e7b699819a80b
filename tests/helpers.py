from __future__ import annotations

import random
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional, Sequence, Tuple

from rltp.packet import Packet, decode

Address = Tuple[str, int]


class MemoryEndpoint:
    """Single-threaded stand-in for UdpEndpoint.

    A datagram sent to the peer is handed straight to the peer's handler when
    it has one (so a receiver answers inside the sender's call), otherwise it
    waits in the peer's inbox. Polling an empty inbox behaves like a timeout.
    """

    def __init__(self, address: Address, drop: Optional[Callable[[bytes], bool]] = None):
        self.address = address
        self.drop = drop
        self.peer: Optional[MemoryEndpoint] = None
        self.handler: Optional[Callable[[bytes, Address], object]] = None
        self.inbox: Deque[Tuple[bytes, Address]] = deque()
        self.sent: List[bytes] = []

    def sendto(self, data: bytes, addr: Address) -> None:
        self.sent.append(data)
        if self.drop is not None and self.drop(data):
            return
        assert self.peer is not None
        if self.peer.handler is not None:
            self.peer.handler(data, self.address)
        else:
            self.peer.inbox.append((data, self.address))

    def poll(self, timeout_ms: Optional[int] = None) -> Optional[Tuple[bytes, Address]]:
        if self.inbox:
            return self.inbox.popleft()
        return None

    def close(self) -> None:
        pass

    def sent_packets(self) -> List[Packet]:
        return [decode(raw) for raw in self.sent]


def wire(
    client_drop: Optional[Callable[[bytes], bool]] = None,
    server_drop: Optional[Callable[[bytes], bool]] = None,
) -> Tuple[MemoryEndpoint, MemoryEndpoint]:
    client = MemoryEndpoint(("10.0.0.1", 40000), client_drop)
    server = MemoryEndpoint(("10.0.0.2", 7777), server_drop)
    client.peer, server.peer = server, client
    return client, server


def drop_once(predicate: Callable[[Packet], bool]) -> Callable[[bytes], bool]:
    fired: List[bool] = []

    def drop(data: bytes) -> bool:
        if not fired and predicate(decode(data)):
            fired.append(True)
            return True
        return False

    return drop


def drop_randomly(rate: float, seed: int) -> Callable[[bytes], bool]:
    rng = random.Random(seed)
    return lambda data: rng.random() < rate


class ScriptedRandom(random.Random):
    """Chunk sizes follow a script; item choice stays seeded."""

    def __init__(self, sizes: Sequence[int], seed: int = 0):
        super().__init__(seed)
        self.sizes = list(sizes)

    def randint(self, a: int, b: int) -> int:
        if self.sizes:
            return self.sizes.pop(0)
        return super().randint(a, b)


def write_item(directory: Path, name: str, lines: Sequence[str]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    return path
