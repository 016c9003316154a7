"""Target audio profile checks.

The sound board only plays 44.1 kHz, 16-bit, stereo PCM WAV files.
:class:`FormatValidator` compares measured properties against that
profile and reports every deviating field at once; :func:`measure`
reads the properties from a file header using ``soundfile``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import UnreadableAudio

# soundfile subtype -> bits per sample
SUBTYPE_BITS: Dict[str, int] = {
    "PCM_S8": 8,
    "PCM_U8": 8,
    "PCM_16": 16,
    "PCM_24": 24,
    "PCM_32": 32,
    "FLOAT": 32,
    "DOUBLE": 64,
    "ULAW": 8,
    "ALAW": 8,
}


@dataclass(frozen=True)
class TargetProfile:
    sample_rate_hz: int = 44100
    channel_count: int = 2
    bits_per_sample: int = 16
    container: str = "WAV"
    subtype: str = "PCM_16"


TARGET_PROFILE = TargetProfile()


@dataclass(frozen=True)
class AudioProperties:
    sample_rate_hz: Optional[int]
    channel_count: Optional[int]
    bits_per_sample: Optional[int]
    container: Optional[str] = None
    subtype: Optional[str] = None


@dataclass(frozen=True)
class FieldMismatch:
    field: str
    expected: Any
    actual: Any

    def __str__(self) -> str:
        return f"{self.field}: expected {self.expected}, got {self.actual}"


@dataclass(frozen=True)
class ValidationResult:
    mismatches: List[FieldMismatch] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.mismatches

    def describe(self) -> str:
        return "; ".join(str(m) for m in self.mismatches) or "ok"


@dataclass(frozen=True)
class FormatValidator:
    """Check measured properties against a :class:`TargetProfile`."""

    profile: TargetProfile = TARGET_PROFILE

    def validate(self, props: AudioProperties) -> ValidationResult:
        checks = [
            ("sample_rate_hz", self.profile.sample_rate_hz, props.sample_rate_hz),
            ("channel_count", self.profile.channel_count, props.channel_count),
            ("bits_per_sample", self.profile.bits_per_sample, props.bits_per_sample),
        ]
        # Container and encoding are only judged when they were measured.
        if props.container is not None:
            checks.append(("container", self.profile.container, props.container))
        if props.subtype is not None:
            checks.append(("subtype", self.profile.subtype, props.subtype))
        mismatches = [FieldMismatch(name, want, got) for name, want, got in checks if want != got]
        return ValidationResult(mismatches)


def measure(path: Path) -> AudioProperties:
    """Read sample rate, channels and bit depth from ``path``."""
    import soundfile as sf

    try:
        info = sf.info(str(path))
    except Exception as exc:
        raise UnreadableAudio(f"Cannot read audio properties of {path}: {exc}") from exc
    subtype = str(info.subtype or "") or None
    return AudioProperties(
        sample_rate_hz=int(info.samplerate),
        channel_count=int(info.channels),
        bits_per_sample=SUBTYPE_BITS.get(subtype or ""),
        container=str(info.format or "") or None,
        subtype=subtype,
    )
