"""External conversion and metadata tools.

Transcoding is delegated to ``ffmpeg`` and tag inspection to
``ffprobe``; neither is reimplemented here.  Both are optional at
import time and are located with :func:`shutil.which` when used.

Conversion always writes a fresh file, never the input, so a failed
conversion leaves the source untouched.  The same ffmpeg call strips
every container tag (``-map_metadata -1``) and can set a single
``title`` tag in its place.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .audio_format import TARGET_PROFILE, TargetProfile
from .errors import ConversionFailed, MetadataProbeFailed

# Tags ffmpeg itself adds; their presence alone does not warrant a rewrite.
IGNORED_TAGS = {"encoder"}

_PCM_CODECS = {8: "pcm_u8", 16: "pcm_s16le", 24: "pcm_s24le", 32: "pcm_s32le"}


@dataclass
class FfmpegConverter:
    """Convert audio to the target profile with ffmpeg."""

    ffmpeg: str = "ffmpeg"

    def available(self) -> bool:
        return shutil.which(self.ffmpeg) is not None

    def build_command(
        self,
        input_path: Path,
        output_path: Path,
        profile: TargetProfile = TARGET_PROFILE,
        title: Optional[str] = None,
    ) -> List[str]:
        codec = _PCM_CODECS.get(profile.bits_per_sample)
        if codec is None:
            raise ConversionFailed(f"Unsupported bit depth: {profile.bits_per_sample}")
        cmd = [
            self.ffmpeg,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            str(input_path),
            "-vn",
            "-map_metadata",
            "-1",
            "-fflags",
            "+bitexact",
            "-ar",
            str(profile.sample_rate_hz),
            "-ac",
            str(profile.channel_count),
            "-acodec",
            codec,
        ]
        if title:
            cmd += ["-metadata", f"title={title}"]
        cmd += ["-f", "wav", str(output_path)]
        return cmd

    def convert(
        self,
        input_path: Path,
        output_path: Path,
        profile: TargetProfile = TARGET_PROFILE,
        title: Optional[str] = None,
    ) -> Path:
        input_path = Path(input_path)
        output_path = Path(output_path)
        if input_path.resolve() == output_path.resolve():
            raise ConversionFailed("Refusing to convert a file onto itself")
        if not self.available():
            raise ConversionFailed(f"{self.ffmpeg} not found in PATH")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(input_path, output_path, profile, title)
        try:
            res = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            raise ConversionFailed(f"Could not run {self.ffmpeg}: {exc}") from exc
        if res.returncode != 0:
            if output_path.exists():
                output_path.unlink()
            detail = (res.stderr or "").strip().splitlines()
            raise ConversionFailed(
                f"Conversion failed for {input_path.name}: {detail[-1] if detail else 'exit ' + str(res.returncode)}"
            )
        if not output_path.exists():
            raise ConversionFailed(f"Conversion produced no output for {input_path.name}")
        return output_path


@dataclass
class FfprobeProbe:
    """Read container-level tags with ffprobe."""

    ffprobe: str = "ffprobe"

    def available(self) -> bool:
        return shutil.which(self.ffprobe) is not None

    def probe(self, path: Path) -> Dict[str, str]:
        if not self.available():
            raise MetadataProbeFailed(f"{self.ffprobe} not found in PATH")
        cmd = [
            self.ffprobe,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_entries",
            "format_tags",
            str(path),
        ]
        try:
            res = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            raise MetadataProbeFailed(f"Could not run {self.ffprobe}: {exc}") from exc
        if res.returncode != 0:
            raise MetadataProbeFailed(f"Probe failed for {Path(path).name}: {res.stderr.strip()}")
        try:
            payload = json.loads(res.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise MetadataProbeFailed(f"Unexpected probe output for {Path(path).name}") from exc
        tags = (payload.get("format") or {}).get("tags") or {}
        return {str(k): str(v) for k, v in tags.items()}


def needs_sanitizing(tags: Dict[str, str]) -> bool:
    return any(key.lower() not in IGNORED_TAGS for key in tags)
