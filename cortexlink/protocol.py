#!/usr/bin/env python3
"""
protocol.py — Frame codec for the cortex UART protocol.

Frame (3-byte header + type-dependent payload, no length on the wire):
  [0xFA][TYPE][SEQ][payload ...]

  TYPE 1  status                10-byte payload
          [?][L0][L1][L2][L3][R0][R1][R2][R3][?]
          L/R = left/right quadrature counts, signed 32-bit little-endian
  TYPE 2  behind-scan request    0-byte payload
  TYPE 3  pickup complete        0-byte payload
  other   unknown                0-byte payload (ignored)

Outbound from the host:
  TYPE 1  pose estimate          [X][Y][YAW]          1 byte each
  TYPE 3  pickup targets         [X0][Y0][Z0] ... x4  1 byte each

Outbound values are truncated to a single byte, so sub-integer precision
is lost.  That is the cortex's wire format; widening it needs a protocol
change on both ends.
"""

from __future__ import annotations

import enum
import logging
import math
import struct
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence, Tuple

log = logging.getLogger(__name__)

# ── Wire constants ──────────────────────────────────────────────────────────
START_MARKER = 0xFA
HEADER_LEN   = 3
SEQ_MODULO   = 256

STATUS_LEFT_OFFSET  = 1
STATUS_RIGHT_OFFSET = 5

PICKUP_TARGET_SLOTS = 4     # (x, y, z) triples per pickup message

_I32_LE = struct.Struct("<i")


class MessageType(enum.IntEnum):
    STATUS              = 1
    BEHIND_SCAN_REQUEST = 2
    PICKUP_COMPLETE     = 3


PAYLOAD_LENGTH = {
    MessageType.STATUS:              10,
    MessageType.BEHIND_SCAN_REQUEST: 0,
    MessageType.PICKUP_COMPLETE:     0,
}

ReadFn = Callable[[int], bytes]


def length_for(msg_type: int) -> int:
    """Payload length for *msg_type*; unknown types carry no payload."""
    return PAYLOAD_LENGTH.get(msg_type, 0)


def is_known(msg_type: int) -> bool:
    return msg_type in PAYLOAD_LENGTH


@dataclass
class Frame:
    """One decoded inbound message."""
    message_type: int
    sequence: int
    payload: bytes = b""
    skipped: int = 0          # noise bytes discarded before the marker

    @property
    def known(self) -> bool:
        return is_known(self.message_type)


# ── Decoding ────────────────────────────────────────────────────────────────

def decode_header(read: ReadFn) -> Tuple[int, int, int]:
    """
    Read one header from *read* and return ``(type, sequence, skipped)``.

    Bytes are consumed one at a time until the start marker shows up, with
    no bound on how many are discarded.  The type and sequence bytes that
    follow are read unconditionally.
    """
    skipped = 0
    while read(1)[0] != START_MARKER:
        skipped += 1
    if skipped:
        log.debug("Resync: skipped %d byte(s) before start marker", skipped)
    msg_type, seq = read(2)
    return msg_type, seq, skipped


def decode_payload(read: ReadFn, msg_type: int) -> bytes:
    """Read exactly ``length_for(msg_type)`` payload bytes."""
    n = length_for(msg_type)
    return read(n) if n else b""


def read_frame(read: ReadFn) -> Frame:
    msg_type, seq, skipped = decode_header(read)
    payload = decode_payload(read, msg_type)
    return Frame(message_type=msg_type, sequence=seq,
                 payload=payload, skipped=skipped)


def read_i32_le(buf: bytes, offset: int) -> int:
    """Signed 32-bit little-endian integer at *offset*."""
    return _I32_LE.unpack_from(buf, offset)[0]


def decode_status(payload: bytes) -> Tuple[int, int]:
    """Return ``(left_count, right_count)`` from a status payload."""
    expected = PAYLOAD_LENGTH[MessageType.STATUS]
    if len(payload) != expected:
        raise ValueError(f"Status payload must be {expected} bytes, got {len(payload)}")
    return (read_i32_le(payload, STATUS_LEFT_OFFSET),
            read_i32_le(payload, STATUS_RIGHT_OFFSET))


# ── Encoding ────────────────────────────────────────────────────────────────

def encode_header(msg_type: int, sequence: int) -> bytes:
    return bytes((START_MARKER, msg_type & 0xFF, sequence % SEQ_MODULO))


def encode_frame(msg_type: int, sequence: int, payload: bytes = b"") -> bytes:
    return encode_header(msg_type, sequence) + bytes(payload)


def encode_status(left_count: int, right_count: int, flags: int = 0) -> bytes:
    """Build a 10-byte status payload (used by simulators and tests)."""
    buf = bytearray(PAYLOAD_LENGTH[MessageType.STATUS])
    buf[0] = flags & 0xFF
    _I32_LE.pack_into(buf, STATUS_LEFT_OFFSET, left_count)
    _I32_LE.pack_into(buf, STATUS_RIGHT_OFFSET, right_count)
    return bytes(buf)


def to_wire_byte(value: float) -> int:
    """Truncate toward zero and keep the low 8 bits."""
    return int(value) & 0xFF


def encode_pose_estimate(x: float, y: float, yaw: float) -> bytes:
    if not all(math.isfinite(v) for v in (x, y, yaw)):
        raise ValueError(f"Pose estimate must be finite, got ({x}, {y}, {yaw})")
    return bytes((to_wire_byte(x), to_wire_byte(y), to_wire_byte(yaw)))


def encode_pickup_targets(coords: Iterable[Sequence[float]]) -> bytes:
    """
    Flatten up to :data:`PICKUP_TARGET_SLOTS` (x, y, z) triples.

    Missing slots are zero-filled so the payload is always 12 bytes.
    """
    coords = [tuple(c) for c in coords]
    if len(coords) > PICKUP_TARGET_SLOTS:
        raise ValueError(f"At most {PICKUP_TARGET_SLOTS} targets per message, "
                         f"got {len(coords)}")
    out = bytearray()
    for c in coords:
        if len(c) != 3:
            raise ValueError(f"Target must be an (x, y, z) triple, got {c!r}")
        out.extend(to_wire_byte(v) for v in c)
    out.extend(bytes(3 * (PICKUP_TARGET_SLOTS - len(coords))))
    return bytes(out)
