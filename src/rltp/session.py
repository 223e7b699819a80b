"""Session driver: runs the upload phase, the merge and the download phase in order.

Each phase gets its own PhaseState, so sequence numbers start from zero in
both directions. Any TransferError propagates to the caller, which decides
what to do with the process.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .config import ClientConfig, ServerConfig
from .constants import MAX_LINES_PER_PACKET
from .errors import ItemError, ProtocolViolation
from .items import ItemRegistry, LineSink, LineSource, SinkFactory, directory_sinks, single_sink
from .net import UdpEndpoint, resolve_peer
from .reassembler import reassemble
from .receiver import Metrics, SequencedReceiver
from .scheduler import MultiItemScheduler
from .sender import SequencedSender
from .state import Phase, PhaseState

log = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionReport:
    role: str
    items: List[str]
    artifact: Path
    upload: Metrics = field(default_factory=Metrics)
    download: Metrics = field(default_factory=Metrics)

    def as_dict(self) -> dict:
        return {
            "role": self.role,
            "items": self.items,
            "artifact": str(self.artifact),
            "upload": self.upload.as_dict(),
            "download": self.download.as_dict(),
        }


def open_items(paths: Iterable[Path]) -> List[LineSource]:
    """Open every configured item up front; one bad item means no session at all."""
    sources: List[LineSource] = []
    try:
        for path in paths:
            src = LineSource.open(path)
            if any(s.name == src.name for s in sources):
                src.close()
                raise ItemError(f"item name {src.name!r} is configured twice")
            sources.append(src)
    except ItemError:
        for src in sources:
            src.close()
        raise
    return sources


def run_client(cfg: ClientConfig, udp: Optional[UdpEndpoint] = None) -> SessionReport:
    dest = resolve_peer(cfg.host, cfg.port)
    sources = open_items(cfg.items)
    owned = udp is None
    if udp is None:
        udp = UdpEndpoint.sending(timeout_ms=cfg.timeout_ms, impairment=cfg.impairment)

    report = SessionReport(role="client", items=[s.name for s in sources], artifact=cfg.output)
    try:
        scheduler = MultiItemScheduler(sources, rng=random.Random(cfg.seed))
        try:
            report.upload = SequencedSender(
                udp,
                dest,
                scheduler,
                PhaseState(Phase.UPLOAD),
                timeout_ms=cfg.timeout_ms,
                max_retries=cfg.max_retries,
            ).run()
        finally:
            scheduler.close()

        log.info("upload acknowledged; awaiting merged artifact")
        registry = ItemRegistry(single_sink(cfg.output), max_items=1)
        receiver = SequencedReceiver(udp, registry, PhaseState(Phase.DOWNLOAD), grace_ms=cfg.grace_ms)
        try:
            receiver.run()
        finally:
            registry.close()
        if not registry:
            LineSink.open(cfg.output).close()
        report.download = receiver.metrics
    finally:
        if owned:
            udp.close()

    log.info("artifact saved as %s", cfg.output)
    return report


def _item_sinks(cfg: ServerConfig) -> SinkFactory:
    open_sink = directory_sinks(cfg.workdir)

    def guarded(name: str) -> LineSink:
        if name == cfg.artifact:
            raise ProtocolViolation(f"item name {name!r} collides with the merged artifact")
        return open_sink(name)

    return guarded


def run_server_session(cfg: ServerConfig, udp: UdpEndpoint) -> SessionReport:
    """Serve exactly one client: receive its items, merge them, send the merge back."""
    cfg.workdir.mkdir(parents=True, exist_ok=True)
    report = SessionReport(role="server", items=[], artifact=cfg.artifact_path)

    registry = ItemRegistry(_item_sinks(cfg), max_items=cfg.max_items)
    receiver = SequencedReceiver(udp, registry, PhaseState(Phase.UPLOAD), grace_ms=cfg.grace_ms)
    try:
        peer = receiver.run()
    finally:
        registry.close()
    report.upload = receiver.metrics
    report.items = sorted(registry.names)

    reassemble(registry.paths(), cfg.artifact_path)

    source = LineSource.open(cfg.artifact_path)
    scheduler = MultiItemScheduler([source], chunk_lines=MAX_LINES_PER_PACKET)
    try:
        report.download = SequencedSender(
            udp,
            peer,
            scheduler,
            PhaseState(Phase.DOWNLOAD),
            timeout_ms=cfg.timeout_ms,
            max_retries=cfg.max_retries,
            prior_phase_sentinel=Phase.UPLOAD.end_ack,
        ).run()
    finally:
        scheduler.close()
    return report


def serve(
    cfg: ServerConfig,
    on_session: Optional[Callable[[SessionReport], None]] = None,
    udp: Optional[UdpEndpoint] = None,
) -> int:
    """Run sessions back to back on one socket. Returns the number of sessions served."""
    owned = udp is None
    if udp is None:
        udp = UdpEndpoint.listening(
            cfg.listen_host,
            cfg.port,
            timeout_ms=cfg.timeout_ms,
            impairment=cfg.impairment,
        )

    served = 0
    try:
        host, port = udp.address
        log.info("server listening on %s:%d", host, port)
        while True:
            report = run_server_session(cfg, udp)
            served += 1
            if on_session is not None:
                on_session(report)
            if cfg.once:
                return served
    finally:
        if owned:
            udp.close()
