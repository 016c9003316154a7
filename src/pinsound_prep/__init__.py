"""Pinsound Prep package

Prepares audio files for a pinball sound-trigger board: converts them to
44.1 kHz / 16-bit / stereo WAV, strips their metadata, and places them
in the board's folder under a three digit prefix chosen from the range
of the sound's category.

Public classes are re-exported here for convenience.
"""

from .allocator import DuplicateResolution, PendingAsset, PrefixAllocator  # noqa: F401
from .categories import CategoryRangeTable, ClosedInterval, SoundCategory, Variant  # noqa: F401
from .config_service import ConfigService, PrepSettings  # noqa: F401
from .engine import SoundPrepEngine  # noqa: F401

__all__ = [
    "CategoryRangeTable",
    "ClosedInterval",
    "ConfigService",
    "DuplicateResolution",
    "PendingAsset",
    "PrefixAllocator",
    "PrepSettings",
    "SoundCategory",
    "SoundPrepEngine",
    "Variant",
]

__version__ = "1.0.0"
