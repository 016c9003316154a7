"""Prefix allocation for the target directory.

:class:`PrefixAllocator` decides which prefix a pending asset receives
within one interval.  One allocator is used for a whole batch:

* The cursor starts at the interval's low bound and only moves
  forward, so assets in one batch receive strictly increasing
  prefixes in the order they are presented.  A fresh batch always
  starts again from the low bound, which lets slots freed between
  runs be reused.
* Before any slot is considered the asset's base name is compared
  with every file in the directory.  A match is returned as a
  :class:`Reject` so the caller must pick a :class:`DuplicateResolution`;
  nothing is ever placed twice silently.
* Occupancy is read from the :class:`DirectoryState` handed in by the
  caller, which must be a fresh scan (or, in dry-run mode, a
  simulated one) taken after the previous asset was committed.
* Once the cursor passes the high bound the allocator reports
  :class:`Exhausted` for that call and every later one.

The allocator never touches the filesystem itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

from .categories import ClosedInterval
from .occupancy import DirectoryState, PlacedEntry


@dataclass(frozen=True)
class PendingAsset:
    """A conformant file waiting for a prefix."""

    base_name: str
    source_path: Path
    interval: Optional[ClosedInterval] = None


@dataclass(frozen=True)
class Assign:
    prefix: int


@dataclass(frozen=True)
class Reject:
    """Duplicate conflict: the base name is already placed."""

    existing: Tuple[PlacedEntry, ...]


@dataclass(frozen=True)
class Exhausted:
    interval: ClosedInterval


PrefixDecision = Union[Assign, Reject, Exhausted]


class DuplicateResolution(Enum):
    REPLACE = "replace"
    KEEP_BOTH = "keep"
    SKIP = "skip"


DecisionProvider = Callable[[PendingAsset, Tuple[PlacedEntry, ...]], DuplicateResolution]


def policy_provider(resolution: Union[DuplicateResolution, str]) -> DecisionProvider:
    """Return a provider that always answers ``resolution``."""
    fixed = resolution if isinstance(resolution, DuplicateResolution) else DuplicateResolution(str(resolution).lower())

    def _decide(asset: PendingAsset, existing: Tuple[PlacedEntry, ...]) -> DuplicateResolution:
        return fixed

    return _decide


@dataclass
class PrefixAllocator:
    """Greedy lowest-free-from-cursor allocator for one batch."""

    interval: ClosedInterval
    cursor: int = field(init=False)
    exhausted: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self.cursor = self.interval.low

    def allocate(
        self,
        asset: PendingAsset,
        state: DirectoryState,
        allow_duplicate: bool = False,
    ) -> PrefixDecision:
        if asset.interval is not None and asset.interval != self.interval:
            raise ValueError(f"Asset {asset.base_name!r} targets {asset.interval}, allocator serves {self.interval}")
        if self.exhausted:
            return Exhausted(self.interval)

        if not allow_duplicate:
            matches = state.find_base_name(asset.base_name)
            if matches:
                return Reject(tuple(matches))

        i = self.cursor
        while i <= self.interval.high and state.occupied(i):
            i += 1
        if i > self.interval.high:
            self.cursor = i
            self.exhausted = True
            return Exhausted(self.interval)

        self.cursor = i + 1
        return Assign(i)
