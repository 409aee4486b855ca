"""
Receive-side sequence window.

Classifies each inbound per-message sequence number as fresh, duplicate,
stale, out of order or gapped, tracking the last 64 numbers below the
next expected one in a bitmask. Arithmetic is relative to the base
sequence number agreed during the handshake and wraps at 2**32.
"""

from __future__ import annotations

import attrs

from krbgss.core.types import SequenceOutcome

__all__ = ["SequenceOutcome", "SequenceWindow"]

WINDOW_SIZE = 64
_WINDOW_MASK = (1 << WINDOW_SIZE) - 1


@attrs.define
class SequenceWindow:
    """
    Sliding window over relative sequence numbers.

    received_mask bit k set means relative number next_expected - 1 - k
    has been seen.
    """

    base: int
    next_expected: int = 0
    received_mask: int = 0
    modulus_mask: int = 0xFFFFFFFF

    def classify(self, sequence_number: int, replay: bool, sequence: bool) -> SequenceOutcome:
        """
        Classify an inbound sequence number and record it.

        Args:
            sequence_number: Absolute sequence number from the token
            replay: Whether replay detection was negotiated
            sequence: Whether out-of-sequence detection was negotiated
        """
        if not replay and not sequence:
            return SequenceOutcome.ACCEPT

        relative = (sequence_number - self.base) & self.modulus_mask

        if relative >= self.next_expected:
            offset = relative - self.next_expected
            shift = offset + 1
            if shift >= WINDOW_SIZE:
                self.received_mask = 1
            else:
                self.received_mask = ((self.received_mask << shift) | 1) & _WINDOW_MASK
            self.next_expected = (relative + 1) & self.modulus_mask

            if offset > 0 and sequence:
                return SequenceOutcome.GAP
            return SequenceOutcome.ACCEPT

        offset = self.next_expected - relative
        if offset > WINDOW_SIZE:
            if sequence:
                return SequenceOutcome.UNSEQUENCED
            return SequenceOutcome.STALE

        bit = 1 << (offset - 1)
        if replay and self.received_mask & bit:
            return SequenceOutcome.DUPLICATE

        self.received_mask |= bit
        if sequence:
            return SequenceOutcome.UNSEQUENCED
        return SequenceOutcome.ACCEPT
