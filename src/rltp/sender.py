from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .constants import DEFAULT_TIMEOUT_MS
from .errors import ProtocolViolation, RetryLimitExceeded
from .net import Address, UdpEndpoint
from .packet import Ack, DataPacket, decode
from .receiver import Metrics
from .scheduler import Chunk, MultiItemScheduler
from .state import PhaseState

log = logging.getLogger(__name__)


class SenderState(enum.Enum):
    PREPARING = "preparing"
    AWAITING_ACK = "awaiting_ack"
    ADVANCING = "advancing"
    DONE = "done"


@dataclass(slots=True)
class SequencedSender:
    """Stop-and-wait sending half of one phase.

    Exactly one packet is outstanding at a time. A packet is retransmitted
    byte-for-byte until the ack carrying its sequence number arrives; after
    the last chunk, END is repeated until the phase's sentinel ack arrives.
    """

    udp: UdpEndpoint
    dest: Address
    scheduler: MultiItemScheduler
    state: PhaseState
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: Optional[int] = None
    # answer a repeated END of the peer's previous phase with this sentinel
    prior_phase_sentinel: Optional[int] = None
    metrics: Metrics = field(default_factory=Metrics)
    status: SenderState = SenderState.PREPARING

    def _transmit(self, raw: bytes) -> None:
        self.udp.sendto(raw, self.dest)
        self.metrics.packets_sent += 1

    def _await(self, pkt: DataPacket, expected_ack: int) -> None:
        """Send pkt and block until expected_ack comes back, retransmitting on every timeout."""
        raw = pkt.to_bytes()
        label = "END" if pkt.is_end else f"seq {pkt.seq}"
        retries = 0

        self._transmit(raw)
        deadline = time.monotonic() + self.timeout_ms / 1000.0
        while True:
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            got = self.udp.poll(remaining_ms) if remaining_ms > 0 else None
            if got is None:
                self.metrics.timeouts += 1
                retries += 1
                if self.max_retries is not None and retries > self.max_retries:
                    raise RetryLimitExceeded(
                        f"{self.state.phase.value}: no ack for {label} after {self.max_retries} retries"
                    )
                log.debug("timeout; resending %s (retry %d)", label, retries)
                self.metrics.retransmits += 1
                self._transmit(raw)
                deadline = time.monotonic() + self.timeout_ms / 1000.0
                continue

            data, addr = got
            try:
                reply = decode(data)
            except ValueError as exc:
                log.warning("dropping malformed datagram from %s: %s", addr, exc)
                continue

            if isinstance(reply, DataPacket):
                if reply.is_end and self.prior_phase_sentinel is not None:
                    log.debug("peer repeated END of the previous phase; re-acking")
                    self.udp.sendto(Ack(self.prior_phase_sentinel).to_bytes(), addr)
                else:
                    self.metrics.stale += 1
                    log.debug("ignoring data packet seq %d while awaiting an ack", reply.seq)
                continue

            if reply.acked == expected_ack:
                return
            if reply.acked > pkt.seq:
                raise ProtocolViolation(
                    f"{self.state.phase.value}: ack {reply.acked} for a packet not sent yet "
                    f"(pending seq {pkt.seq})"
                )
            self.metrics.stale += 1
            log.debug("stale ack %d while awaiting %s", reply.acked, label)

    def _send_chunk(self, chunk: Chunk) -> None:
        pkt = DataPacket(
            item=chunk.item,
            start_offset=chunk.start_offset,
            lines=chunk.lines,
            seq=self.state.next_seq,
        )
        self.status = SenderState.AWAITING_ACK
        self._await(pkt, expected_ack=pkt.seq)
        log.debug(
            "ack %d: %s lines %d-%d",
            pkt.seq,
            chunk.item,
            chunk.start_offset,
            chunk.start_offset + len(chunk.lines) - 1,
        )

        self.status = SenderState.ADVANCING
        self.state.advance()
        self.scheduler.commit(chunk)
        self.metrics.lines_sent += len(chunk.lines)
        self.state.items_completed = self.scheduler.items_completed

    def run(self) -> Metrics:
        if self.status is SenderState.DONE:
            raise RuntimeError("phase already finished")
        phase = self.state.phase
        log.info("%s: sending %d item(s) to %s:%d", phase.value, len(self.scheduler.progress), *self.dest)

        while not self.scheduler.done:
            self.status = SenderState.PREPARING
            chunk = self.scheduler.next_chunk()
            if chunk is None:
                raise RuntimeError("scheduler has pending items but produced no chunk")
            self._send_chunk(chunk)

        self.status = SenderState.DONE
        self._await(DataPacket.end(self.state.next_seq), expected_ack=phase.end_ack)
        self.state.done = True
        self.metrics.end_ts = time.monotonic()
        log.info(
            "%s: done; %d packet(s), %d retransmit(s)",
            phase.value,
            self.state.next_seq,
            self.metrics.retransmits,
        )
        return self.metrics
