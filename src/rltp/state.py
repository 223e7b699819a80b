from __future__ import annotations

import enum
from dataclasses import dataclass

from .constants import ACK_DOWNLOAD_DONE, ACK_UPLOAD_DONE


class Phase(enum.Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"

    @property
    def end_ack(self) -> int:
        return ACK_UPLOAD_DONE if self is Phase.UPLOAD else ACK_DOWNLOAD_DONE


@dataclass(slots=True)
class PhaseState:
    """Counters for one transfer direction.

    The sender side only moves next_seq, the receiver side only moves
    last_accepted. Both are non-decreasing for the lifetime of the phase.
    """

    phase: Phase
    next_seq: int = 0
    last_accepted: int = -1
    items_completed: int = 0
    done: bool = False

    @property
    def expected_seq(self) -> int:
        return self.last_accepted + 1

    def advance(self) -> None:
        self.next_seq += 1

    def accept(self) -> None:
        self.last_accepted += 1
