from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .constants import MAX_LINES_PER_PACKET
from .items import LineSource

log = logging.getLogger(__name__)


@dataclass(slots=True)
class ItemProgress:
    name: str
    total_lines: int
    lines_sent: int = 0

    @property
    def completed(self) -> bool:
        return self.lines_sent == self.total_lines

    @property
    def remaining(self) -> int:
        return self.total_lines - self.lines_sent


@dataclass(frozen=True, slots=True)
class Chunk:
    item: str
    start_offset: int
    lines: Tuple[str, ...]


class MultiItemScheduler:
    """Decides which item feeds the next packet and how many lines it carries.

    Items are interleaved at random on the wire; only acknowledged chunks
    count towards an item's progress (see commit()).
    """

    def __init__(
        self,
        sources: Iterable[LineSource],
        rng: random.Random | None = None,
        chunk_lines: int | None = None,
    ):
        if chunk_lines is not None and not 1 <= chunk_lines <= MAX_LINES_PER_PACKET:
            raise ValueError(f"chunk_lines must be 1..{MAX_LINES_PER_PACKET}")
        self.sources = {src.name: src for src in sources}
        self.progress = {name: ItemProgress(name, src.total_lines) for name, src in self.sources.items()}
        self.rng = rng or random.Random()
        self.chunk_lines = chunk_lines

    @property
    def pending(self) -> List[ItemProgress]:
        return [p for p in self.progress.values() if not p.completed]

    @property
    def items_completed(self) -> int:
        return sum(1 for p in self.progress.values() if p.completed)

    @property
    def done(self) -> bool:
        return not self.pending

    def next_chunk(self) -> Optional[Chunk]:
        pending = self.pending
        if not pending:
            return None

        item = self.rng.choice(pending)
        wanted = self.chunk_lines or self.rng.randint(1, MAX_LINES_PER_PACKET)
        src = self.sources[item.name]

        lines = []
        while len(lines) < wanted:
            line = src.read_line()
            if line is None:
                break
            lines.append(line)
        if not lines:
            raise RuntimeError(f"item {item.name} ran dry at line {item.lines_sent} of {item.total_lines}")

        return Chunk(item=item.name, start_offset=item.lines_sent, lines=tuple(lines))

    def commit(self, chunk: Chunk) -> ItemProgress:
        item = self.progress[chunk.item]
        if item.completed:
            raise RuntimeError(f"item {item.name} is already complete")
        if chunk.start_offset != item.lines_sent:
            raise RuntimeError(
                f"chunk for {item.name} starts at {chunk.start_offset}, expected {item.lines_sent}"
            )
        item.lines_sent += len(chunk.lines)
        if item.completed:
            log.info("item %s fully sent (%d lines)", item.name, item.total_lines)
        return item

    def close(self) -> None:
        for src in self.sources.values():
            src.close()
