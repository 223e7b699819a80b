from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator, Mapping

from .items import LineSink, LineSource

log = logging.getLogger(__name__)


def merge_lines(items: Mapping[str, Iterable[str]]) -> Iterator[str]:
    """Yield every item's lines, items in name order, each behind a blank line and a name header.

    Arrival order on the wire has no influence on the result.
    """
    for name in sorted(items):
        yield ""
        yield name
        yield from items[name]


def reassemble(captured: Mapping[str, str | os.PathLike], artifact: str | os.PathLike) -> int:
    """Merge the captured item files into one artifact file. Returns the number of lines written."""
    sources = {name: LineSource.open(path, name=name) for name, path in captured.items()}
    sink = LineSink.open(artifact)
    try:
        for line in merge_lines(sources):
            sink.append(line)
        sink.flush()
    finally:
        sink.close()
        for src in sources.values():
            src.close()

    log.info("merged %d item(s) into %s (%d lines)", len(sources), Path(artifact), sink.lines_written)
    return sink.lines_written
