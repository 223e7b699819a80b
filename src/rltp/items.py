"""Line-oriented files on either end of a transfer.

A LineSource is a named item read one line at a time, pre-scanned once so its
length is known up front. A LineSink is the receiving counterpart. Lines never
include their trailing newline; sinks add it back.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, TextIO

from .constants import END_ITEM, LINE_LEN, NAME_LEN
from .errors import ItemError, ProtocolViolation

log = logging.getLogger(__name__)


def _strip_newline(line: str) -> str:
    return line[:-1] if line.endswith("\n") else line


def check_item_name(name: str) -> None:
    size = len(name.encode("utf-8"))
    if not name or size >= NAME_LEN:
        raise ItemError(f"item name {name!r} must be 1..{NAME_LEN - 1} bytes, got {size}")
    if "\x00" in name or "\\" in name or "/" in name:
        raise ItemError(f"item name {name!r} may not contain NUL, slash or backslash")
    if name == END_ITEM:
        raise ItemError(f"item name {END_ITEM!r} is reserved for the end-of-phase packet")


class LineSource:
    def __init__(self, name: str, path: Path, f: TextIO, total_lines: int):
        self.name = name
        self.path = path
        self._f = f
        self.total_lines = total_lines

    @classmethod
    def open(cls, path: str | os.PathLike, name: str | None = None) -> "LineSource":
        """Open and pre-scan an item; any problem is fatal before a session starts."""
        path = Path(path)
        name = path.name if name is None else name
        check_item_name(name)
        try:
            f = open(path, "r", encoding="utf-8", newline="\n")
        except OSError as exc:
            raise ItemError(f"cannot open item {name!r} at {path}: {exc.strerror or exc}") from exc

        total = 0
        longest = (0, 0)  # (bytes, lineno)
        nul_at = 0
        try:
            for lineno, line in enumerate(f, start=1):
                size = len(_strip_newline(line).encode("utf-8"))
                longest = max(longest, (size, lineno))
                if not nul_at and "\x00" in line:
                    nul_at = lineno
                total += 1
            f.seek(0)
        except (OSError, UnicodeDecodeError) as exc:
            f.close()
            raise ItemError(f"cannot read item {name!r} at {path}: {exc}") from exc

        if nul_at:
            f.close()
            raise ItemError(f"{path}:{nul_at}: line contains a NUL byte")
        size, lineno = longest
        if size >= LINE_LEN:
            f.close()
            raise ItemError(f"{path}:{lineno}: line is {size} bytes (max {LINE_LEN - 1})")

        log.debug("item %s: %d lines", name, total)
        return cls(name, path, f, total)

    def read_line(self) -> Optional[str]:
        line = self._f.readline()
        if line == "":
            return None
        return _strip_newline(line)

    def rewind(self) -> None:
        self._f.seek(0)

    def close(self) -> None:
        self._f.close()

    def __iter__(self):
        self.rewind()
        while (line := self.read_line()) is not None:
            yield line


class LineSink:
    def __init__(self, path: Path, f: TextIO):
        self.path = path
        self._f = f
        self.lines_written = 0

    @classmethod
    def open(cls, path: str | os.PathLike) -> "LineSink":
        path = Path(path)
        return cls(path, open(path, "w", encoding="utf-8", newline=""))

    def append(self, line: str) -> None:
        self._f.write(line + "\n")
        self.lines_written += 1

    def flush(self) -> None:
        self._f.flush()
        os.fsync(self._f.fileno())

    def close(self) -> None:
        if not self._f.closed:
            self._f.close()

    @property
    def closed(self) -> bool:
        return self._f.closed


SinkFactory = Callable[[str], LineSink]


def directory_sinks(root: str | os.PathLike) -> SinkFactory:
    """One file per item directly under root, named after the item."""
    root = Path(root)

    def open_sink(name: str) -> LineSink:
        if name in ("", ".", "..") or Path(name).name != name or "\\" in name:
            raise ProtocolViolation(f"item name {name!r} would escape {root}")
        return LineSink.open(root / name)

    return open_sink


def single_sink(path: str | os.PathLike) -> SinkFactory:
    """Every item name maps onto the same output file."""

    def open_sink(name: str) -> LineSink:
        return LineSink.open(path)

    return open_sink


class ItemRegistry:
    """Open sinks by item name, in the order the names were first seen."""

    def __init__(self, open_sink: SinkFactory, max_items: int | None = None):
        self._open_sink = open_sink
        self.max_items = max_items
        self._sinks: Dict[str, LineSink] = {}

    def resolve(self, name: str) -> LineSink:
        sink = self._sinks.get(name)
        if sink is not None:
            return sink
        if self.max_items is not None and len(self._sinks) >= self.max_items:
            raise ProtocolViolation(
                f"item {name!r} would exceed the configured set of {self.max_items} item(s)"
            )
        sink = self._open_sink(name)
        self._sinks[name] = sink
        log.info("new item %s -> %s", name, sink.path)
        return sink

    @property
    def names(self) -> List[str]:
        return list(self._sinks)

    def paths(self) -> Dict[str, Path]:
        return {name: sink.path for name, sink in self._sinks.items()}

    def __len__(self) -> int:
        return len(self._sinks)

    def __contains__(self, name: object) -> bool:
        return name in self._sinks

    def close(self) -> None:
        for sink in self._sinks.values():
            sink.close()
