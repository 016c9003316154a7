"""
Allocator rules.

This suite pins down the prefix allocation behaviour:
1. Greedy lowest free prefix from the batch cursor
2. Strictly increasing prefixes within one batch
3. Fresh batches restart at the low bound (gap fill across runs)
4. Duplicate base names are always surfaced, never placed silently
5. Exhaustion is terminal and never touches the filesystem

Run with: pytest tests/test_allocator.py -v
"""

import sys
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from pinsound_prep.allocator import (
    Assign,
    DuplicateResolution,
    Exhausted,
    PendingAsset,
    PrefixAllocator,
    Reject,
    policy_provider,
)
from pinsound_prep.categories import ClosedInterval
from pinsound_prep.occupancy import DirectoryState, PlacedEntry, scan_target


KICKOUT = ClosedInterval(21, 29)


def make_state(occupied: dict) -> DirectoryState:
    """Build a snapshot from {prefix: base_name}."""
    return DirectoryState(
        tuple(PlacedEntry(p, name, Path(f"/board/{p:03d}_{name}")) for p, name in occupied.items())
    )


def asset(name: str) -> PendingAsset:
    return PendingAsset(name, Path(f"/inbox/{name}"))


def place(state: DirectoryState, decision, name: str) -> DirectoryState:
    """Simulate the writer committing an Assign."""
    assert isinstance(decision, Assign)
    return state.with_entry(PlacedEntry(decision.prefix, name, Path(f"/board/{decision.prefix:03d}_{name}")))


# ============================================================================
# SCENARIOS
# ============================================================================

def test_empty_interval_assigns_in_order():
    allocator = PrefixAllocator(KICKOUT)
    state = make_state({})
    prefixes = []
    for name in ["kick1.wav", "kick2.wav", "kick3.wav"]:
        decision = allocator.allocate(asset(name), state)
        prefixes.append(decision.prefix)
        state = place(state, decision, name)
    assert prefixes == [21, 22, 23]


def test_existing_base_name_is_rejected_before_assignment():
    allocator = PrefixAllocator(KICKOUT)
    state = make_state({25: "bell.wav"})
    decision = allocator.allocate(asset("bell.wav"), state)
    assert isinstance(decision, Reject)
    assert [e.prefix for e in decision.existing] == [25]
    # The rejected call must not consume a slot.
    assert allocator.cursor == 21


def test_single_gap_is_filled():
    occupied = {p: f"s{p}.wav" for p in range(21, 30) if p != 26}
    decision = PrefixAllocator(KICKOUT).allocate(asset("new.wav"), make_state(occupied))
    assert decision == Assign(26)


def test_full_interval_is_exhausted():
    occupied = {p: f"s{p}.wav" for p in range(21, 30)}
    allocator = PrefixAllocator(KICKOUT)
    decision = allocator.allocate(asset("new.wav"), make_state(occupied))
    assert isinstance(decision, Exhausted)
    assert decision.interval == KICKOUT


def test_exhaustion_is_terminal_for_the_batch():
    occupied = {p: f"s{p}.wav" for p in range(21, 30)}
    allocator = PrefixAllocator(KICKOUT)
    allocator.allocate(asset("a.wav"), make_state(occupied))
    # Even if room appears later in the same batch, the batch stays stopped.
    decision = allocator.allocate(asset("b.wav"), make_state({}))
    assert isinstance(decision, Exhausted)


def test_exhaustion_writes_nothing(tmp_path: Path):
    board = tmp_path / "board"
    board.mkdir()
    for p in range(21, 30):
        (board / f"{p:03d}_s{p}.wav").write_text("x", encoding="utf-8")
    before = sorted((f.name, f.stat().st_mtime_ns) for f in board.iterdir())
    decision = PrefixAllocator(KICKOUT).allocate(asset("new.wav"), scan_target(board))
    after = sorted((f.name, f.stat().st_mtime_ns) for f in board.iterdir())
    assert isinstance(decision, Exhausted)
    assert before == after


# ============================================================================
# PROPERTIES
# ============================================================================

def test_batch_prefixes_are_distinct_increasing_and_in_bounds():
    occupied = {21: "a.wav", 23: "b.wav", 24: "c.wav", 28: "d.wav"}
    state = make_state(occupied)
    allocator = PrefixAllocator(KICKOUT)
    assigned = []
    for i in range(5):
        name = f"new{i}.wav"
        decision = allocator.allocate(asset(name), state)
        assert isinstance(decision, Assign)
        assigned.append(decision.prefix)
        state = place(state, decision, name)
    assert assigned == [22, 25, 26, 27, 29]
    assert len(set(assigned)) == len(assigned)
    assert all(KICKOUT.contains(p) for p in assigned)
    assert not set(assigned) & set(occupied)
    assert isinstance(allocator.allocate(asset("one_more.wav"), state), Exhausted)


def test_cursor_does_not_revisit_slots_freed_within_a_batch():
    state = make_state({})
    allocator = PrefixAllocator(KICKOUT)
    first = allocator.allocate(asset("a.wav"), state)
    state = place(state, first, "a.wav")
    # Slot 21 disappears before the next allocation of the same batch.
    state = state.without(state.entries_at(21))
    second = allocator.allocate(asset("b.wav"), state)
    assert second == Assign(22)


def test_cursor_skips_claims_not_yet_visible():
    # The claim for 21 was not written yet, the snapshot is stale.
    state = make_state({})
    allocator = PrefixAllocator(KICKOUT)
    assert allocator.allocate(asset("a.wav"), state) == Assign(21)
    assert allocator.allocate(asset("b.wav"), state) == Assign(22)


def test_fresh_batch_restarts_at_low_bound():
    state = make_state({p: f"s{p}.wav" for p in range(21, 26)})
    first_run = PrefixAllocator(KICKOUT)
    assert first_run.allocate(asset("x.wav"), state) == Assign(26)
    # Prefix 22 is deleted by hand between runs.
    state = state.without(state.entries_at(22)).with_entry(PlacedEntry(26, "x.wav", Path("/board/026_x.wav")))
    second_run = PrefixAllocator(KICKOUT)
    assert second_run.allocate(asset("y.wav"), state) == Assign(22)


def test_duplicate_detected_across_whole_directory():
    # The existing copy lives in the music range, outside the requested interval.
    state = make_state({105: "bell.wav"})
    decision = PrefixAllocator(KICKOUT).allocate(asset("bell.wav"), state)
    assert isinstance(decision, Reject)
    assert decision.existing[0].prefix == 105


def test_duplicate_match_is_case_sensitive():
    state = make_state({25: "Bell.wav"})
    decision = PrefixAllocator(KICKOUT).allocate(asset("bell.wav"), state)
    assert decision == Assign(21)


def test_all_duplicates_are_reported():
    state = make_state({25: "bell.wav", 33: "bell.wav"})
    decision = PrefixAllocator(KICKOUT).allocate(asset("bell.wav"), state)
    assert isinstance(decision, Reject)
    assert [e.prefix for e in decision.existing] == [25, 33]


def test_allow_duplicate_assigns_new_prefix():
    state = make_state({21: "bell.wav"})
    decision = PrefixAllocator(KICKOUT).allocate(asset("bell.wav"), state, allow_duplicate=True)
    assert decision == Assign(22)


def test_asset_for_other_interval_is_refused():
    allocator = PrefixAllocator(KICKOUT)
    wrong = PendingAsset("x.wav", Path("/inbox/x.wav"), ClosedInterval(101, 199))
    with pytest.raises(ValueError):
        allocator.allocate(wrong, make_state({}))


def test_policy_provider_answers_fixed_resolution():
    decide = policy_provider("keep")
    assert decide(asset("a.wav"), ()) is DuplicateResolution.KEEP_BOTH
    decide = policy_provider(DuplicateResolution.SKIP)
    assert decide(asset("a.wav"), ()) is DuplicateResolution.SKIP
    with pytest.raises(ValueError):
        policy_provider("overwrite")
