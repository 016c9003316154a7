"""Commit allocated files into the target directory."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .naming import DEFAULT_SEPARATOR, format_prefixed_name
from .occupancy import PlacedEntry


@dataclass
class TargetWriter:
    target_dir: Path
    separator: str = DEFAULT_SEPARATOR
    mode: str = "copy"

    def __post_init__(self) -> None:
        self.target_dir = Path(self.target_dir)
        if self.mode not in {"copy", "move"}:
            raise ValueError(f"Unsupported transfer mode: {self.mode}")

    def destination(self, prefix: int, base_name: str) -> Path:
        return self.target_dir / format_prefixed_name(prefix, base_name, self.separator)

    def commit(self, source: Path, prefix: int, base_name: str, mode: Optional[str] = None) -> PlacedEntry:
        """Copy or move ``source`` to its prefixed name.

        ``mode`` overrides the writer default for one file (staged
        conversions are always moved).  Never overwrites: an existing
        destination raises ``FileExistsError``.
        """
        mode = mode or self.mode
        dest = self.destination(prefix, base_name)
        if dest.exists():
            raise FileExistsError(f"Destination already exists: {dest}")
        if mode == "move":
            shutil.move(str(source), str(dest))
        else:
            shutil.copy2(str(source), str(dest))
        return PlacedEntry(prefix=prefix, base_name=base_name, path=dest)

    def set_aside(self, entry: PlacedEntry) -> Path:
        """Hide ``entry`` under a dot-name; scans skip hidden files."""
        path = Path(entry.path)
        hidden = path.with_name(f".replaced-{path.name}")
        path.rename(hidden)
        return hidden

    def restore(self, hidden: Path, entry: PlacedEntry) -> None:
        Path(hidden).rename(Path(entry.path))
