"""
Unit tests for krbgss.gss.sequence module.

Tests the receive-side replay and ordering window.
"""

import pytest

from krbgss.gss.sequence import SequenceOutcome, SequenceWindow, WINDOW_SIZE


def classify_all(window, numbers, replay=True, sequence=True):
    return [window.classify(n, replay=replay, sequence=sequence) for n in numbers]


class TestNoDetection:
    """Tests with neither replay nor sequence detection negotiated."""

    def test_everything_accepted(self):
        """Test duplicates and old numbers pass when nothing was negotiated."""
        window = SequenceWindow(base=10)
        outcomes = classify_all(window, [10, 10, 500, 3], replay=False, sequence=False)
        assert outcomes == [SequenceOutcome.ACCEPT] * 4

    def test_state_untouched(self):
        """Test the window does not move when nothing was negotiated."""
        window = SequenceWindow(base=10)
        window.classify(50, replay=False, sequence=False)
        assert window.next_expected == 0
        assert window.received_mask == 0


class TestInOrder:
    """Tests for tokens arriving in order."""

    def test_in_order_accepted(self):
        """Test consecutive numbers from the base are all accepted."""
        window = SequenceWindow(base=1000)
        outcomes = classify_all(window, range(1000, 1010))
        assert outcomes == [SequenceOutcome.ACCEPT] * 10
        assert window.next_expected == 10

    def test_mask_tracks_received(self):
        """Test every received number sets a bit."""
        window = SequenceWindow(base=0)
        classify_all(window, range(5))
        assert window.received_mask == 0b11111

    def test_wraps_at_32_bits(self):
        """Test relative arithmetic wraps around 2**32."""
        window = SequenceWindow(base=0xFFFFFFFE)
        outcomes = classify_all(window, [0xFFFFFFFE, 0xFFFFFFFF, 0, 1])
        assert outcomes == [SequenceOutcome.ACCEPT] * 4
        assert window.next_expected == 4


class TestDuplicates:
    """Tests for replayed sequence numbers."""

    def test_immediate_duplicate_uses_bit_zero(self):
        """Test next_expected - 1 maps to bit 0 and is caught."""
        window = SequenceWindow(base=0)
        classify_all(window, [0, 1])
        assert window.next_expected == 2
        assert window.classify(1, replay=True, sequence=True) is SequenceOutcome.DUPLICATE

    def test_older_duplicate(self):
        """Test a duplicate further back in the window is caught."""
        window = SequenceWindow(base=0)
        classify_all(window, range(10))
        assert window.classify(3, replay=True, sequence=False) is SequenceOutcome.DUPLICATE

    def test_duplicate_without_replay_detection(self):
        """Test a repeat is only flagged as out of order without replay detection."""
        window = SequenceWindow(base=0)
        classify_all(window, [0, 1], replay=False, sequence=True)
        assert window.classify(1, replay=False, sequence=True) is SequenceOutcome.UNSEQUENCED


class TestReordering:
    """Tests for gaps and late arrivals."""

    def test_gap_then_late_arrival(self):
        """Test 0, 2, 1 yields ACCEPT, GAP, UNSEQUENCED."""
        window = SequenceWindow(base=0)
        outcomes = classify_all(window, [0, 2, 1])
        assert outcomes == [
            SequenceOutcome.ACCEPT,
            SequenceOutcome.GAP,
            SequenceOutcome.UNSEQUENCED,
        ]
        assert window.next_expected == 3
        assert window.received_mask == 0b111

    def test_late_arrival_then_duplicate(self):
        """Test a late arrival is recorded so its repeat is a duplicate."""
        window = SequenceWindow(base=0)
        classify_all(window, [0, 2, 1])
        assert window.classify(1, replay=True, sequence=True) is SequenceOutcome.DUPLICATE

    def test_replay_only_accepts_reordering(self):
        """Test gaps and late arrivals pass with replay detection alone."""
        window = SequenceWindow(base=0)
        outcomes = classify_all(window, [0, 2, 1], replay=True, sequence=False)
        assert outcomes == [SequenceOutcome.ACCEPT] * 3

    def test_first_token_ahead_of_base_is_gap(self):
        """Test the very first token can already be a gap."""
        window = SequenceWindow(base=100)
        assert window.classify(105, replay=True, sequence=True) is SequenceOutcome.GAP
        assert window.next_expected == 6


class TestWindowEdge:
    """Tests around the 64-entry window boundary."""

    def test_large_jump_resets_mask(self):
        """Test a jump of 64 or more leaves only the new bit."""
        window = SequenceWindow(base=0)
        classify_all(window, range(8))
        window.classify(8 + WINDOW_SIZE, replay=True, sequence=False)
        assert window.received_mask == 1

    def test_mask_never_exceeds_window(self):
        """Test the mask is clamped to 64 bits."""
        window = SequenceWindow(base=0)
        classify_all(window, range(200), replay=True, sequence=False)
        assert window.received_mask == (1 << WINDOW_SIZE) - 1

    def test_oldest_slot_still_tracked(self):
        """Test offset 64 is inside the window."""
        window = SequenceWindow(base=0)
        classify_all(window, [0, 64], replay=True, sequence=False)
        assert window.next_expected == 65
        assert window.classify(1, replay=True, sequence=False) is SequenceOutcome.ACCEPT
        assert window.classify(1, replay=True, sequence=False) is SequenceOutcome.DUPLICATE

    @pytest.mark.parametrize(
        "sequence,expected",
        [(False, SequenceOutcome.STALE), (True, SequenceOutcome.UNSEQUENCED)],
    )
    def test_beyond_window(self, sequence, expected):
        """Test numbers older than the window are stale or out of order."""
        window = SequenceWindow(base=0)
        classify_all(window, [0, 100], replay=True, sequence=sequence)
        assert window.classify(0, replay=True, sequence=sequence) is expected

    def test_beyond_window_leaves_state(self):
        """Test a stale number does not move the window."""
        window = SequenceWindow(base=0)
        classify_all(window, [0, 100], replay=True, sequence=False)
        mask, expected = window.received_mask, window.next_expected
        window.classify(0, replay=True, sequence=False)
        assert (window.received_mask, window.next_expected) == (mask, expected)
