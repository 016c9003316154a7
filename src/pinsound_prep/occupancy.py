"""Read the current occupancy of the target directory.

The target directory is the single source of truth: files may be added
or deleted by hand between runs, so the directory is listed fresh for
every allocation instead of being tracked in a cache.
:class:`DirectoryState` is an immutable snapshot of one listing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

from .categories import ClosedInterval
from .errors import TargetUnreachable
from .naming import DEFAULT_ACCEPTED_SEPARATORS, parse_prefixed_name


@dataclass(frozen=True)
class PlacedEntry:
    """A file already resident in the target directory."""

    prefix: int
    base_name: str
    path: Path


@dataclass(frozen=True)
class DirectoryState:
    """Snapshot of the prefixed files in a target directory."""

    entries: Tuple[PlacedEntry, ...] = ()
    _by_prefix: Dict[int, List[PlacedEntry]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.entries, key=lambda e: (e.prefix, e.base_name)))
        object.__setattr__(self, "entries", ordered)
        index: Dict[int, List[PlacedEntry]] = {}
        for entry in ordered:
            index.setdefault(entry.prefix, []).append(entry)
        object.__setattr__(self, "_by_prefix", index)

    def __len__(self) -> int:
        return len(self.entries)

    def occupied(self, prefix: int) -> bool:
        return prefix in self._by_prefix

    def entries_at(self, prefix: int) -> List[PlacedEntry]:
        return list(self._by_prefix.get(prefix, []))

    def find_base_name(self, base_name: str) -> List[PlacedEntry]:
        """Return every entry whose base name matches exactly (case sensitive)."""
        return [e for e in self.entries if e.base_name == base_name]

    def in_interval(self, interval: ClosedInterval) -> List[PlacedEntry]:
        return [e for e in self.entries if interval.contains(e.prefix)]

    def free_in(self, interval: ClosedInterval) -> List[int]:
        return [p for p in interval if not self.occupied(p)]

    def duplicate_base_names(self) -> Dict[str, List[int]]:
        """Return base names that appear under more than one prefix."""
        seen: Dict[str, List[int]] = {}
        for entry in self.entries:
            seen.setdefault(entry.base_name, []).append(entry.prefix)
        return {name: prefixes for name, prefixes in seen.items() if len(prefixes) > 1}

    def with_entry(self, entry: PlacedEntry) -> "DirectoryState":
        return DirectoryState(self.entries + (entry,))

    def without(self, removed: Iterable[PlacedEntry]) -> "DirectoryState":
        gone = set(removed)
        return DirectoryState(tuple(e for e in self.entries if e not in gone))


def ensure_target(target_dir: Path) -> Path:
    target = Path(target_dir)
    if not target.exists():
        raise TargetUnreachable(f"Target directory does not exist: {target}")
    if not target.is_dir():
        raise TargetUnreachable(f"Target is not a directory: {target}")
    return target


def scan_target(
    target_dir: Path,
    separators: Sequence[str] = DEFAULT_ACCEPTED_SEPARATORS,
) -> DirectoryState:
    """List ``target_dir`` and return the prefixed files it holds.

    Subdirectories, hidden files and names without a three digit
    prefix are ignored.
    """
    target = ensure_target(target_dir)
    entries: List[PlacedEntry] = []
    try:
        children = list(target.iterdir())
    except OSError as exc:
        raise TargetUnreachable(f"Cannot list target directory {target}: {exc}") from exc
    for child in children:
        if child.name.startswith(".") or not child.is_file():
            continue
        parsed = parse_prefixed_name(child.name, separators)
        if parsed is None:
            continue
        prefix, base_name = parsed
        entries.append(PlacedEntry(prefix=prefix, base_name=base_name, path=child))
    return DirectoryState(tuple(entries))
