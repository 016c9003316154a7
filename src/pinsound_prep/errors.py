"""Exception types raised by Pinsound Prep.

Batch-level errors (``UnknownCategory``, ``MalformedInterval``,
``TargetUnreachable``) abort a run before anything is touched.
Per-asset errors (``ConversionFailed``, ``ValidationFailed``,
``UnreadableAudio``) are caught by the engine, recorded in the run
report, and the batch moves on to the next file.
"""

from __future__ import annotations


class PinsoundError(Exception):
    """Base class for all Pinsound Prep errors."""


class UnknownCategory(PinsoundError, ValueError):
    """A category/variant pair is not present in the range table."""


class MalformedInterval(PinsoundError, ValueError):
    """An operator supplied prefix interval is not usable."""


class TargetUnreachable(PinsoundError):
    """The target directory is missing or is not a directory."""


class UnreadableAudio(PinsoundError):
    """An audio file could not be opened to read its properties."""


class ConversionFailed(PinsoundError):
    """The external converter failed or produced no output."""


class ValidationFailed(PinsoundError):
    """A converted file still does not match the target profile."""

    def __init__(self, message: str, mismatches=None) -> None:
        super().__init__(message)
        self.mismatches = list(mismatches or [])


class MetadataProbeFailed(PinsoundError):
    """The external metadata probe failed."""
