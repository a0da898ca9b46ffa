#!/usr/bin/env python3
"""
sequence.py — Per-message-type sequence counters.

Inbound: each frame carries an 8-bit counter that must advance by exactly
one (mod 256) per message type.  The very first accepted frame seeds the
counter.  On deployed robots that bootstrap flag is shared by all types,
so only the first type to arrive is seeded and every other type's first
frame is checked against 0.  That is almost
certainly a bug but is kept as the default for wire compatibility;
``bootstrap_per_type=True`` seeds each type independently.

Outbound: a separate counter per type, stamped into headers sent to the
cortex.
"""

from __future__ import annotations

from typing import Dict, Optional

from .protocol import PAYLOAD_LENGTH, SEQ_MODULO, is_known


class SequenceTracker:
    """
    Validate inbound counters and stamp outbound ones.

    Parameters
    ----------
    bootstrap_per_type : bool
        Seed each message type on its own first frame instead of only the
        first frame of the session.
    resync_on_mismatch : bool
        Store the received counter on rejection too, so a single dropped
        frame causes exactly one rejection.  Off by default: a rejection
        leaves the stored counter untouched.
    """

    def __init__(self, bootstrap_per_type: bool = False,
                 resync_on_mismatch: bool = False):
        self.bootstrap_per_type = bootstrap_per_type
        self.resync_on_mismatch = resync_on_mismatch
        self._inbound: Dict[int, int] = {t: 0 for t in PAYLOAD_LENGTH}
        self._outbound: Dict[int, int] = {t: 0 for t in PAYLOAD_LENGTH}
        self._first_seen = False
        self._seeded: set[int] = set()
        self.accepted = 0
        self.mismatches = 0

    def _needs_bootstrap(self, msg_type: int) -> bool:
        if self.bootstrap_per_type:
            return msg_type not in self._seeded
        return not self._first_seen

    def expected(self, msg_type: int) -> Optional[int]:
        """Next counter that would be accepted, or None before bootstrap."""
        if not is_known(msg_type) or self._needs_bootstrap(msg_type):
            return None
        return (self._inbound[msg_type] + 1) % SEQ_MODULO

    def last(self, msg_type: int) -> int:
        return self._inbound[msg_type]

    def validate(self, msg_type: int, counter: int) -> bool:
        """Check an inbound counter.  Unknown types are rejected untouched."""
        if not is_known(msg_type):
            return False

        if self._needs_bootstrap(msg_type):
            self._inbound[msg_type] = counter
            self._first_seen = True
            self._seeded.add(msg_type)
            self.accepted += 1
            return True

        expected = (self._inbound[msg_type] + 1) % SEQ_MODULO
        if counter == expected:
            self._inbound[msg_type] = counter
            self.accepted += 1
            return True

        self.mismatches += 1
        if self.resync_on_mismatch:
            self._inbound[msg_type] = counter
        return False

    def next_outbound(self, msg_type: int) -> int:
        """Increment and return the outbound counter, wrapping 255 -> 0."""
        nxt = (self._outbound.get(msg_type, 0) + 1) % SEQ_MODULO
        self._outbound[msg_type] = nxt
        return nxt
