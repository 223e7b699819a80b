from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from .constants import (
    DEFAULT_ARTIFACT,
    DEFAULT_GRACE_MS,
    DEFAULT_OUTPUT,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_MS,
)
from .net import Impairment


def _impairment(args: argparse.Namespace) -> Impairment:
    return Impairment(loss_rate=args.loss_rate, delay_ms=args.delay_ms)


def _retries(value: int) -> Optional[int]:
    # 0 on the command line means "retry forever"
    return value or None


@dataclass(frozen=True, slots=True)
class ClientConfig:
    host: str
    items: Tuple[Path, ...]
    port: int = DEFAULT_PORT
    output: Path = Path(DEFAULT_OUTPUT)
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    grace_ms: int = DEFAULT_GRACE_MS
    max_retries: Optional[int] = None
    seed: Optional[int] = None
    impairment: Impairment = field(default_factory=Impairment)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "ClientConfig":
        return cls(
            host=args.host,
            items=tuple(Path(p) for p in args.items),
            port=args.port,
            output=Path(args.output),
            timeout_ms=args.timeout_ms,
            grace_ms=args.grace_ms,
            max_retries=_retries(args.max_retries),
            seed=args.seed,
            impairment=_impairment(args),
        )


@dataclass(frozen=True, slots=True)
class ServerConfig:
    listen_host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    workdir: Path = Path(".")
    artifact: str = DEFAULT_ARTIFACT
    max_items: Optional[int] = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    grace_ms: int = DEFAULT_GRACE_MS
    max_retries: Optional[int] = None
    once: bool = False
    impairment: Impairment = field(default_factory=Impairment)

    @property
    def artifact_path(self) -> Path:
        return self.workdir / self.artifact

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "ServerConfig":
        return cls(
            listen_host=args.listen_host,
            port=args.port,
            workdir=Path(args.workdir),
            artifact=args.artifact,
            max_items=args.max_items,
            timeout_ms=args.timeout_ms,
            grace_ms=args.grace_ms,
            max_retries=_retries(args.max_retries),
            once=args.once,
            impairment=_impairment(args),
        )
