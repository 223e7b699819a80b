from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Tuple, Union

from .constants import (
    ACK,
    ACK_FORMAT,
    DATA,
    DATA_FORMAT,
    END_ITEM,
    HEADER_FORMAT,
    LINE_LEN,
    MAX_LINES_PER_PACKET,
    NAME_LEN,
    VERSION,
)

DATA_SIZE = struct.calcsize(DATA_FORMAT)
ACK_SIZE = struct.calcsize(ACK_FORMAT)


class PacketKind(enum.IntEnum):
    DATA = DATA
    ACK = ACK


def _pack_text(text: str, width: int, what: str) -> bytes:
    raw = text.encode("utf-8")
    if b"\x00" in raw:
        raise ValueError(f"{what} contains a NUL byte")
    if len(raw) >= width:
        raise ValueError(f"{what} too long: {len(raw)} bytes (max {width - 1})")
    return raw


def _unpack_text(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class DataPacket:
    item: str
    start_offset: int
    lines: Tuple[str, ...]
    seq: int

    @property
    def line_count(self) -> int:
        return len(self.lines)

    @property
    def is_end(self) -> bool:
        return self.item == END_ITEM

    def to_bytes(self) -> bytes:
        if self.is_end:
            if self.lines:
                raise ValueError("END carries no lines")
        elif not 1 <= len(self.lines) <= MAX_LINES_PER_PACKET:
            raise ValueError(f"chunk must hold 1..{MAX_LINES_PER_PACKET} lines, got {len(self.lines)}")
        if self.start_offset < 0:
            raise ValueError("start_offset must be non-negative")

        padded = [_pack_text(line, LINE_LEN, "line") for line in self.lines]
        padded += [b""] * (MAX_LINES_PER_PACKET - len(padded))
        return struct.pack(
            DATA_FORMAT,
            VERSION,
            int(PacketKind.DATA),
            _pack_text(self.item, NAME_LEN, "item name"),
            self.start_offset,
            len(self.lines),
            *padded,
            self.seq,
        )

    @staticmethod
    def from_bytes(raw: bytes) -> "DataPacket":
        if len(raw) != DATA_SIZE:
            raise ValueError(f"data datagram has {len(raw)} bytes, expected {DATA_SIZE}")
        version, kind, name, offset, count, *rest = struct.unpack(DATA_FORMAT, raw)
        _check_header(version, kind, PacketKind.DATA)
        if not 0 <= count <= MAX_LINES_PER_PACKET:
            raise ValueError(f"line count out of range: {count}")
        lines, seq = rest[:MAX_LINES_PER_PACKET], rest[-1]
        return DataPacket(
            item=_unpack_text(name),
            start_offset=offset,
            lines=tuple(_unpack_text(line) for line in lines[:count]),
            seq=seq,
        )

    @staticmethod
    def end(seq: int) -> "DataPacket":
        return DataPacket(item=END_ITEM, start_offset=0, lines=(), seq=seq)


@dataclass(frozen=True, slots=True)
class Ack:
    acked: int

    def to_bytes(self) -> bytes:
        return struct.pack(ACK_FORMAT, VERSION, int(PacketKind.ACK), self.acked)

    @staticmethod
    def from_bytes(raw: bytes) -> "Ack":
        if len(raw) != ACK_SIZE:
            raise ValueError(f"ack datagram has {len(raw)} bytes, expected {ACK_SIZE}")
        version, kind, acked = struct.unpack(ACK_FORMAT, raw)
        _check_header(version, kind, PacketKind.ACK)
        return Ack(acked)


Packet = Union[DataPacket, Ack]


def _check_header(version: int, kind: int, expected: PacketKind) -> None:
    if version != VERSION:
        raise ValueError(f"version mismatch: expected {VERSION}, got {version}")
    if kind != expected:
        raise ValueError(f"kind mismatch: expected {expected.name}, got {kind}")


def decode(raw: bytes) -> Packet:
    """Decode any datagram by its kind byte. Raises ValueError if it is not a valid packet."""
    header_len = struct.calcsize(HEADER_FORMAT)
    if len(raw) < header_len:
        raise ValueError("datagram too small to be a valid packet")
    _, kind = struct.unpack(HEADER_FORMAT, raw[:header_len])
    if kind == PacketKind.DATA:
        return DataPacket.from_bytes(raw)
    if kind == PacketKind.ACK:
        return Ack.from_bytes(raw)
    raise ValueError(f"unknown packet kind {kind}")
