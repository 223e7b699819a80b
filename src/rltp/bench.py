from __future__ import annotations

import random
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .config import ClientConfig, ServerConfig
from .errors import IntegrityError
from .items import LineSource
from .net import Impairment, UdpEndpoint
from .reassembler import merge_lines
from .session import SessionReport, run_client, serve


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    items: int
    lines: int
    duration_s: float
    lines_per_s: float
    retransmits: int
    timeouts: int


def synthetic_items(count: int, lines: int, seed: Optional[int] = None) -> Dict[str, List[str]]:
    rng = random.Random(seed)
    return {
        f"file_{i + 1}.txt": [f"{i + 1}:{n}:" + "x" * rng.randint(0, 60) for n in range(rng.randint(1, lines))]
        for i in range(count)
    }


def run_loopback(
    items: Mapping[str, List[str]],
    *,
    loss_rate: float = 0.0,
    delay_ms: int = 0,
    timeout_ms: int = 100,
    grace_ms: int = 300,
    max_retries: Optional[int] = None,
    seed: Optional[int] = None,
    workdir: Optional[Path] = None,
) -> tuple[SessionReport, SessionReport]:
    """Run one full client/server session over 127.0.0.1 and check the artifact the client got back."""
    tmp = None
    if workdir is None:
        tmp = tempfile.TemporaryDirectory()
        workdir = Path(tmp.name)

    try:
        client_dir = workdir / "client"
        server_dir = workdir / "server"
        client_dir.mkdir(parents=True, exist_ok=True)
        for name, lines in items.items():
            (client_dir / name).write_text("".join(line + "\n" for line in lines), encoding="utf-8")

        rng = random.Random(seed)
        server_cfg = ServerConfig(
            listen_host="127.0.0.1",
            port=0,
            workdir=server_dir,
            timeout_ms=timeout_ms,
            grace_ms=grace_ms,
            max_retries=max_retries,
            once=True,
        )
        server_ep = UdpEndpoint.listening(
            "127.0.0.1",
            0,
            timeout_ms=timeout_ms,
            impairment=Impairment(loss_rate, delay_ms, random.Random(rng.random())),
        )
        _, port = server_ep.address

        reports: Dict[str, SessionReport] = {}
        errors: List[BaseException] = []

        def server_runner():
            try:
                serve(server_cfg, on_session=lambda r: reports.setdefault("server", r), udp=server_ep)
            except BaseException as exc:
                errors.append(exc)
            finally:
                server_ep.close()

        t = threading.Thread(target=server_runner, daemon=True)
        t.start()

        client_cfg = ClientConfig(
            host="127.0.0.1",
            items=tuple(client_dir / name for name in items),
            port=port,
            output=client_dir / "combined_from_server.txt",
            timeout_ms=timeout_ms,
            grace_ms=grace_ms,
            max_retries=max_retries,
            seed=seed,
            impairment=Impairment(loss_rate, delay_ms, random.Random(rng.random())),
        )
        client_report = run_client(client_cfg)
        t.join(timeout=30.0)
        if errors:
            raise errors[0]
        if t.is_alive() or "server" not in reports:
            raise IntegrityError("server did not finish the session")

        expected = list(merge_lines({name: lines for name, lines in items.items() if lines}))
        received = LineSource.open(client_cfg.output)
        try:
            actual = list(received)
        finally:
            received.close()
        if actual != expected:
            raise IntegrityError(
                f"artifact differs from the expected merge ({len(actual)} vs {len(expected)} lines)"
            )
        return client_report, reports["server"]
    finally:
        if tmp is not None:
            tmp.cleanup()


def run_benchmark(
    *,
    items: int = 10,
    lines: int = 20,
    loss_rate: float = 0.0,
    delay_ms: int = 0,
    timeout_ms: int = 100,
    grace_ms: int = 300,
    max_retries: Optional[int] = None,
    seed: Optional[int] = None,
) -> BenchmarkResult:
    data = synthetic_items(items, lines, seed)
    client, server = run_loopback(
        data,
        loss_rate=loss_rate,
        delay_ms=delay_ms,
        timeout_ms=timeout_ms,
        grace_ms=grace_ms,
        max_retries=max_retries,
        seed=seed,
    )

    total_lines = sum(len(v) for v in data.values())
    duration_s = max(0.001, client.upload.duration_s + client.download.duration_s)
    return BenchmarkResult(
        items=len(data),
        lines=total_lines,
        duration_s=duration_s,
        lines_per_s=total_lines / duration_s,
        retransmits=client.upload.retransmits + server.download.retransmits,
        timeouts=client.upload.timeouts + server.download.timeouts,
    )
