"""Unit tests for the pairing index."""

import pytest

from voicepair.pairing import PairingIndex


def test_pair_is_symmetric() -> None:
    """Test both directions are recorded."""
    index = PairingIndex()
    index.pair("a", "b")

    assert index.partner_of("a") == "b"
    assert index.partner_of("b") == "a"
    assert index.is_paired("a") and index.is_paired("b")
    assert len(index) == 1
    assert index.is_consistent()


def test_pair_rejects_self() -> None:
    """Test a session cannot be its own partner."""
    index = PairingIndex()

    with pytest.raises(ValueError, match="itself"):
        index.pair("a", "a")


def test_pair_rejects_already_paired() -> None:
    """Test a session holds at most one partner."""
    index = PairingIndex()
    index.pair("a", "b")

    with pytest.raises(ValueError, match="already paired"):
        index.pair("a", "c")
    with pytest.raises(ValueError, match="already paired"):
        index.pair("c", "b")

    assert index.partner_of("a") == "b"
    assert index.partner_of("c") is None


def test_unpair_removes_both_sides() -> None:
    """Test unpairing from either side."""
    index = PairingIndex()
    index.pair("a", "b")

    assert index.unpair("b") == "a"
    assert index.partner_of("a") is None
    assert index.partner_of("b") is None
    assert len(index) == 0
    assert index.unpair("a") is None


def test_paired_duration() -> None:
    """Test pairing start times are tracked per pairing."""
    index = PairingIndex()
    assert index.paired_duration("a") is None

    index.pair("a", "b")
    duration = index.paired_duration("a")
    assert duration is not None and duration >= 0.0

    index.unpair("a")
    assert index.paired_duration("b") is None


def test_pairs_lists_each_pair_once() -> None:
    """Test pair enumeration."""
    index = PairingIndex()
    index.pair("a", "b")
    index.pair("c", "d")

    assert sorted(tuple(sorted(p)) for p in index.pairs()) == [("a", "b"), ("c", "d")]
    assert "c" in index
    assert "e" not in index
