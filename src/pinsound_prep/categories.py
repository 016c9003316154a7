"""Prefix ranges for each sound category.

The sound board decides what to play from the numeric prefix of a
file, so every functional category owns a fixed block of prefixes.
Each category has a primary collection and an alternate one::

    Kickout   primary  21-29    alternate  31-39
    Rollover  primary  41-49    alternate  51-59
    Tilt      primary  61-69    alternate  71-79
    Music     primary 101-199   alternate 201-299

When a sound does not fit any category an operator may supply an
arbitrary interval instead; :func:`manual_interval` validates it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Mapping, Tuple, Union

from .errors import MalformedInterval, UnknownCategory

# Prefixes are rendered with three digits.
MAX_PREFIX = 999


class SoundCategory(Enum):
    KICKOUT = "kickout"
    ROLLOVER = "rollover"
    TILT = "tilt"
    MUSIC = "music"


class Variant(Enum):
    PRIMARY = "primary"
    ALTERNATE = "alternate"


@dataclass(frozen=True)
class ClosedInterval:
    """Inclusive integer range ``[low, high]``."""

    low: int
    high: int

    def contains(self, prefix: int) -> bool:
        return self.low <= prefix <= self.high

    @property
    def width(self) -> int:
        return self.high - self.low + 1

    def overlaps(self, other: "ClosedInterval") -> bool:
        return self.low <= other.high and other.low <= self.high

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.low, self.high + 1))

    def __str__(self) -> str:
        return f"{self.low}-{self.high}"


CATEGORY_RANGES: Dict[Tuple[SoundCategory, Variant], ClosedInterval] = {
    (SoundCategory.KICKOUT, Variant.PRIMARY): ClosedInterval(21, 29),
    (SoundCategory.KICKOUT, Variant.ALTERNATE): ClosedInterval(31, 39),
    (SoundCategory.ROLLOVER, Variant.PRIMARY): ClosedInterval(41, 49),
    (SoundCategory.ROLLOVER, Variant.ALTERNATE): ClosedInterval(51, 59),
    (SoundCategory.TILT, Variant.PRIMARY): ClosedInterval(61, 69),
    (SoundCategory.TILT, Variant.ALTERNATE): ClosedInterval(71, 79),
    (SoundCategory.MUSIC, Variant.PRIMARY): ClosedInterval(101, 199),
    (SoundCategory.MUSIC, Variant.ALTERNATE): ClosedInterval(201, 299),
}


def _coerce_enum(enum_cls, value, kind: str):
    if isinstance(value, enum_cls):
        return value
    text = str(value or "").strip().lower()
    for member in enum_cls:
        if member.value == text or member.name.lower() == text:
            return member
    raise UnknownCategory(f"Unknown {kind}: {value!r}")


def _check_interval(interval: ClosedInterval) -> None:
    if not isinstance(interval.low, int) or not isinstance(interval.high, int):
        raise MalformedInterval(f"Interval bounds must be integers: {interval!r}")
    if interval.low < 1 or interval.high < 1:
        raise MalformedInterval(f"Interval bounds must be positive: {interval}")
    if interval.low > interval.high:
        raise MalformedInterval(f"Interval low bound exceeds high bound: {interval}")
    if interval.high > MAX_PREFIX:
        raise MalformedInterval(f"Interval exceeds {MAX_PREFIX}: {interval}")


@dataclass(frozen=True)
class CategoryRangeTable:
    """Immutable lookup from (category, variant) to a prefix interval."""

    ranges: Mapping[Tuple[SoundCategory, Variant], ClosedInterval] = field(
        default_factory=lambda: dict(CATEGORY_RANGES)
    )

    def __post_init__(self) -> None:
        items = list(self.ranges.items())
        for key, interval in items:
            _check_interval(interval)
        for i, (key_a, a) in enumerate(items):
            for key_b, b in items[i + 1 :]:
                if a.overlaps(b):
                    raise MalformedInterval(
                        f"Ranges for {key_a[0].value}/{key_a[1].value} and "
                        f"{key_b[0].value}/{key_b[1].value} overlap"
                    )

    def range_for(
        self,
        category: Union[SoundCategory, str],
        variant: Union[Variant, str] = Variant.PRIMARY,
    ) -> ClosedInterval:
        """Return the interval for a category/variant pair.

        Strings are accepted (case insensitive) so command line and
        config values can be passed straight through.
        """
        key = (
            _coerce_enum(SoundCategory, category, "category"),
            _coerce_enum(Variant, variant, "variant"),
        )
        try:
            return self.ranges[key]
        except KeyError:
            raise UnknownCategory(f"No range defined for {key[0].value}/{key[1].value}") from None

    def label_for(self, interval: ClosedInterval) -> str:
        """Return ``category/variant`` for a table interval, or ``manual``."""
        for (category, variant), candidate in self.ranges.items():
            if candidate == interval:
                return f"{category.value}/{variant.value}"
        return "manual"

    def items(self):
        return self.ranges.items()


def manual_interval(low, high) -> ClosedInterval:
    """Validate an operator supplied interval.

    Accepts integers or numeric strings.  Raises
    :class:`MalformedInterval` when the bounds are not positive
    integers, are reversed, or do not fit in three digits.
    """
    bounds = []
    for value in (low, high):
        if isinstance(value, bool):
            raise MalformedInterval(f"Interval bound is not an integer: {value!r}")
        if isinstance(value, int):
            bounds.append(value)
            continue
        text = str(value).strip()
        if not text.isdigit():
            raise MalformedInterval(f"Interval bound is not an integer: {value!r}")
        bounds.append(int(text))
    interval = ClosedInterval(bounds[0], bounds[1])
    _check_interval(interval)
    return interval


_INTERVAL_RE = re.compile(r"^\s*(\S+?)\s*(?:-|:|\.\.)\s*(\S+)\s*$")


def parse_interval(text: str) -> ClosedInterval:
    """Parse ``"LOW-HIGH"`` (or ``LOW:HIGH`` / ``LOW..HIGH``)."""
    match = _INTERVAL_RE.match(text or "")
    if not match:
        raise MalformedInterval(f"Expected LOW-HIGH, got {text!r}")
    return manual_interval(match.group(1), match.group(2))


DEFAULT_RANGE_TABLE = CategoryRangeTable()
