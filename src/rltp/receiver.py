from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .constants import DEFAULT_GRACE_MS
from .errors import ProtocolViolation
from .items import ItemRegistry
from .net import Address, UdpEndpoint
from .packet import Ack, DataPacket, decode
from .state import PhaseState

log = logging.getLogger(__name__)


@dataclass(slots=True)
class Metrics:
    packets_sent: int = 0
    lines_sent: int = 0
    timeouts: int = 0
    retransmits: int = 0
    duplicates: int = 0
    stale: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    def as_dict(self) -> dict:
        return {
            "packets": self.packets_sent,
            "lines": self.lines_sent,
            "timeouts": self.timeouts,
            "retransmits": self.retransmits,
            "duplicates": self.duplicates,
            "stale": self.stale,
            "seconds": round(self.duration_s, 3),
        }


@dataclass(slots=True)
class SequencedReceiver:
    """Receiving half of one phase.

    Applies each new chunk exactly once, in sequence order, to the sink of the
    item it names, and acknowledges it. `accept()` handles a single datagram
    and is what `run()` loops over.
    """

    udp: UdpEndpoint
    registry: ItemRegistry
    state: PhaseState
    grace_ms: int = DEFAULT_GRACE_MS
    metrics: Metrics = field(default_factory=Metrics)
    peer: Optional[Address] = None

    def _ack(self, acked: int, addr: Address) -> None:
        self.udp.sendto(Ack(acked).to_bytes(), addr)
        self.metrics.packets_sent += 1

    def accept(self, raw: bytes, addr: Address) -> bool:
        """Process one datagram. Returns True once the END packet has been acknowledged."""
        try:
            pkt = decode(raw)
        except ValueError as exc:
            log.warning("dropping malformed datagram from %s: %s", addr, exc)
            return False

        if not isinstance(pkt, DataPacket):
            log.debug("ignoring %s from %s", pkt, addr)
            return False

        self.peer = addr
        phase = self.state.phase.value

        if pkt.is_end:
            if pkt.seq != self.state.expected_seq:
                log.debug("%s: END carries seq %d, expected %d", phase, pkt.seq, self.state.expected_seq)
            self._ack(self.state.phase.end_ack, addr)
            if not self.state.done:
                self.state.done = True
                self.state.items_completed = len(self.registry)
                log.info("%s: END received after %d packet(s)", phase, self.state.expected_seq)
            return True

        if self.state.done:
            log.debug("%s: ignoring seq %d after END", phase, pkt.seq)
            return True

        last = self.state.last_accepted
        if pkt.seq < 0:
            self.metrics.stale += 1
            log.warning("%s: discarding negative seq %d", phase, pkt.seq)
            return False
        if pkt.seq == last:
            # our ack was lost and the sender retried; do not write the lines twice
            self.metrics.duplicates += 1
            log.debug("%s: duplicate seq %d, re-acking", phase, pkt.seq)
            self._ack(last, addr)
            return False
        if pkt.seq > last + 1:
            raise ProtocolViolation(
                f"{phase}: received seq {pkt.seq} while expecting {last + 1}; "
                "only one packet may be in flight"
            )
        if pkt.seq < last:
            self.metrics.stale += 1
            log.debug("%s: discarding stale seq %d (last accepted %d)", phase, pkt.seq, last)
            return False

        sink = self.registry.resolve(pkt.item)
        if pkt.start_offset != sink.lines_written:
            raise ProtocolViolation(
                f"{phase}: seq {pkt.seq} puts {pkt.item} at line {pkt.start_offset}, "
                f"but {sink.lines_written} line(s) were received"
            )
        for line in pkt.lines:
            sink.append(line)
        sink.flush()

        self.state.accept()
        self.metrics.lines_sent += pkt.line_count
        log.debug(
            "%s: seq %d, lines %d-%d of %s",
            phase,
            pkt.seq,
            pkt.start_offset,
            pkt.start_offset + pkt.line_count - 1,
            pkt.item,
        )
        self._ack(pkt.seq, addr)
        return False

    def linger(self) -> None:
        """Keep answering a repeated END until grace_ms passes, in case our final ack was lost."""
        deadline = time.monotonic() + self.grace_ms / 1000.0
        while True:
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                return
            got = self.udp.poll(remaining_ms)
            if got is None:
                continue
            raw, addr = got
            self.accept(raw, addr)

    def run(self) -> Address:
        while not self.state.done:
            got = self.udp.poll()
            if got is None:
                self.metrics.timeouts += 1
                log.debug("%s: no data yet; waiting", self.state.phase.value)
                continue
            raw, addr = got
            self.accept(raw, addr)

        self.linger()
        self.metrics.end_ts = time.monotonic()
        if self.peer is None:
            raise RuntimeError("phase ended without a peer address")
        return self.peer
