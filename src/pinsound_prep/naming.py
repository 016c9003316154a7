"""Filename helpers.

Two jobs live here:

* :func:`strip_track_prefix` removes disc/track numbering from freshly
  ingested files (``"03 02 MySong.wav"`` -> ``"MySong.wav"``) so that
  base names are canonical before a prefix is chosen.
* :func:`format_prefixed_name` / :func:`parse_prefixed_name` render and
  read the ``<3-digit prefix><separator><base name>`` form used inside
  the target directory.

Only one separator is used when writing, but several may be accepted
when reading, because directories prepared by hand tend to mix ``_``
and ``-``.
"""

from __future__ import annotations

import re
from pathlib import PurePath
from typing import Iterable, Optional, Tuple

DEFAULT_SEPARATOR = "_"
DEFAULT_ACCEPTED_SEPARATORS: Tuple[str, ...] = ("_", "-")

# A leading digit run, further short digit groups split by separators,
# then at least one separator before the real name starts.
_TRACK_PREFIX_RE = re.compile(r"^[0-9]+(?:[\s._-]*[0-9]{1,3})*[\s._-]+")


def strip_track_prefix(filename: str) -> str:
    """Remove leading disc/track numbering from ``filename``.

    The extension is left alone.  A name that would end up with an
    empty stem is returned unchanged (``"01.wav"`` stays ``"01.wav"``).
    Applying the function twice gives the same result as applying it
    once.
    """
    path = PurePath(filename)
    stem, suffix = path.stem, path.suffix
    if not stem:
        return filename
    current = stem
    while True:
        match = _TRACK_PREFIX_RE.match(current)
        if not match:
            break
        remainder = current[match.end():].lstrip(" \t._-")
        if not remainder or remainder == current:
            break
        current = remainder
    return current + suffix


def format_prefixed_name(prefix: int, base_name: str, separator: str = DEFAULT_SEPARATOR) -> str:
    if not 0 <= int(prefix) <= 999:
        raise ValueError(f"Prefix out of range: {prefix}")
    if len(separator) != 1:
        raise ValueError(f"Separator must be a single character: {separator!r}")
    return f"{int(prefix):03d}{separator}{base_name}"


def _prefix_pattern(separators: Iterable[str]) -> "re.Pattern[str]":
    chars = "".join(re.escape(s) for s in separators)
    return re.compile(rf"^([0-9]{{3}})[{chars}](.+)$")


def parse_prefixed_name(
    filename: str,
    separators: Iterable[str] = DEFAULT_ACCEPTED_SEPARATORS,
) -> Optional[Tuple[int, str]]:
    """Return ``(prefix, base_name)`` or ``None`` if the name carries no prefix.

    The prefix is exactly three digits followed by one accepted
    separator.  Only that single group is consumed, so a base name
    that itself starts with digits (``"025_10 Ball.wav"``) keeps them.
    """
    seps = tuple(separators)
    if not seps:
        return None
    match = _prefix_pattern(seps).match(filename)
    if not match:
        return None
    return int(match.group(1)), match.group(2)
