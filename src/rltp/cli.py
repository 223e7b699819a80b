from __future__ import annotations

import argparse
import dataclasses
import json
import logging

from .bench import run_benchmark
from .config import ClientConfig, ServerConfig
from .constants import (
    DEFAULT_ARTIFACT,
    DEFAULT_GRACE_MS,
    DEFAULT_OUTPUT,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_MS,
)
from .errors import ProtocolViolation, TransferError
from .session import SessionReport, run_client, serve

log = logging.getLogger("rltp")


def _emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def cmd_serve(args: argparse.Namespace) -> int:
    cfg = ServerConfig.from_args(args)

    def report(r: SessionReport) -> None:
        _emit(r.as_dict(), args.json)

    serve(cfg, on_session=report)
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    report = run_client(ClientConfig.from_args(args))
    _emit(report.as_dict(), args.json)
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(
        items=args.items,
        lines=args.lines,
        loss_rate=args.loss_rate,
        delay_ms=args.delay_ms,
        timeout_ms=args.timeout_ms,
        grace_ms=args.grace_ms,
        max_retries=args.max_retries or None,
        seed=args.seed,
    )
    payload = {"role": "bench", **dataclasses.asdict(r)}
    _emit(payload, args.json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="rltp",
        description="Send line-oriented files over UDP, get them back merged (stop-and-wait).",
    )
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        x.add_argument("--timeout-ms", type=int, default=timeout_ms)
        x.add_argument("--grace-ms", type=int, default=DEFAULT_GRACE_MS,
                       help="how long to keep re-acking a repeated END")
        x.add_argument("--max-retries", type=int, default=0, help="per packet; 0 retries forever")
        x.add_argument("--loss-rate", type=float, default=0.0, help="simulate packet loss")
        x.add_argument("--delay-ms", type=int, default=0, help="simulate per-datagram delay")
        x.add_argument("--json", action="store_true")

    srv = sub.add_parser("serve", help="receive items, merge them and send the merge back")
    add_common(srv)
    srv.add_argument("--listen-host", default="0.0.0.0")
    srv.add_argument("--port", type=int, default=DEFAULT_PORT)
    srv.add_argument("--workdir", default=".", help="where received items and the artifact are written")
    srv.add_argument("--artifact", default=DEFAULT_ARTIFACT)
    srv.add_argument("--max-items", type=int, default=None, help="reject sessions with more items")
    srv.add_argument("--once", action="store_true", help="exit after one session")
    srv.set_defaults(func=cmd_serve)

    send = sub.add_parser("send", help="upload items and save the merged artifact")
    add_common(send)
    send.add_argument("host", help="server hostname or address")
    send.add_argument("items", nargs="+", help="line-oriented files to upload")
    send.add_argument("--port", type=int, default=DEFAULT_PORT)
    send.add_argument("--output", default=DEFAULT_OUTPUT)
    send.add_argument("--seed", type=int, default=None, help="seed for chunk scheduling")
    send.set_defaults(func=cmd_send)

    bench = sub.add_parser("bench", help="full session on loopback with synthetic items")
    add_common(bench, timeout_ms=100)
    bench.add_argument("--items", type=int, default=10)
    bench.add_argument("--lines", type=int, default=20, help="upper bound of lines per item")
    bench.add_argument("--seed", type=int, default=None)
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except ProtocolViolation as exc:
        log.error("protocol violation: %s", exc)
        return 2
    except TransferError as exc:
        log.error("%s", exc)
        return 1
    except OSError as exc:
        log.error("network error: %s", exc)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
