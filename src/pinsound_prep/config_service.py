"""Configuration management for Pinsound Prep.

This module centralises all logic related to finding and loading the
configuration file.  It supports both AppData and portable installation
modes, resolves the appropriate configuration directory, and validates
``config.json`` against a JSON schema before use.

Portable mode is controlled via a ``portable.flag`` file located in the
application directory or by passing ``--portable`` to the CLI.  The flag
file takes precedence over the command line.

The loaded dictionary is turned into an immutable :class:`PrepSettings`
which is passed explicitly to the engine; nothing reads configuration
from module globals.

Example usage::

    from pinsound_prep.config_service import ConfigService, PrepSettings

    config_service = ConfigService(app_dir=Path.cwd())
    settings = PrepSettings.from_config(config_service.load_config())
"""

from __future__ import annotations

import json
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import jsonschema

from .naming import DEFAULT_ACCEPTED_SEPARATORS, DEFAULT_SEPARATOR

APP_NAME = "PinsoundPrep"
BUNDLED_SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"

DEFAULT_AUDIO_EXTENSIONS: Tuple[str, ...] = (
    ".wav",
    ".wave",
    ".aif",
    ".aiff",
    ".flac",
    ".mp3",
    ".ogg",
    ".m4a",
)


def _get_appdata_root(app_name: str = APP_NAME) -> Path:
    """Return the platform-specific base directory for config files."""
    system = platform.system().lower()
    if system == "windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / app_name
        return Path.home() / f"AppData/Roaming/{app_name}"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / app_name
    return Path.home() / ".config" / app_name


def _load_json(path: Path) -> Any:
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _save_json(data: Any, file_path: Path) -> None:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with file_path.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2)


def _validate_json(data: Any, schema_path: Path) -> None:
    schema = _load_json(schema_path)
    if not schema:
        return
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc.message}") from exc


@dataclass(frozen=True)
class PrepSettings:
    """Immutable run settings derived from ``config.json``."""

    separator: str = DEFAULT_SEPARATOR
    accepted_separators: Tuple[str, ...] = DEFAULT_ACCEPTED_SEPARATORS
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    strip_metadata: bool = True
    tag_title: bool = True
    audio_extensions: Tuple[str, ...] = DEFAULT_AUDIO_EXTENSIONS
    on_duplicate: str = "ask"
    logs_dir: Optional[Path] = None
    ignore_rules: Tuple[str, ...] = ("__MACOSX", ".DS_Store", "._")

    def __post_init__(self) -> None:
        # The writing separator must always be readable back.
        if self.separator not in self.accepted_separators:
            object.__setattr__(self, "accepted_separators", self.accepted_separators + (self.separator,))

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> "PrepSettings":
        cfg = config if isinstance(config, dict) else {}
        kwargs: Dict[str, Any] = {}
        for key in ("separator", "ffmpeg", "ffprobe", "on_duplicate"):
            if cfg.get(key):
                kwargs[key] = str(cfg[key])
        for key in ("strip_metadata", "tag_title"):
            if key in cfg:
                kwargs[key] = bool(cfg[key])
        if cfg.get("accepted_separators"):
            kwargs["accepted_separators"] = tuple(str(s) for s in cfg["accepted_separators"])
        if cfg.get("audio_extensions"):
            kwargs["audio_extensions"] = tuple(
                e.lower() if e.startswith(".") else f".{e.lower()}" for e in (str(x) for x in cfg["audio_extensions"])
            )
        if cfg.get("logs_dir"):
            kwargs["logs_dir"] = Path(str(cfg["logs_dir"])).expanduser()
        return cls(**kwargs)


@dataclass
class ConfigService:
    """Resolve and manage Pinsound Prep configuration."""

    app_dir: Path
    portable_flag_filename: str = "portable.flag"
    config_filename: str = "config.json"
    schema_dirname: str = "schemas"
    schema_name: str = "config.schema.json"
    _cached_mode: Optional[bool] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.app_dir = Path(self.app_dir)

    def _portable_flag_exists(self) -> bool:
        return (self.app_dir / self.portable_flag_filename).exists()

    def detect_mode(self, cli_portable: bool = False) -> bool:
        """Return ``True`` if portable mode should be used.

        Portable mode is selected if a ``portable.flag`` file exists in
        the application directory, or if ``cli_portable`` is truthy.
        The flag file always wins.  The result is cached for subsequent
        calls.
        """
        if self._cached_mode is None:
            if self._portable_flag_exists():
                self._cached_mode = True
            else:
                self._cached_mode = bool(cli_portable)
        return self._cached_mode

    def get_config_dir(self, cli_portable: bool = False) -> Path:
        if self.detect_mode(cli_portable=cli_portable):
            return self.app_dir
        return _get_appdata_root()

    def get_config_path(self, cli_portable: bool = False) -> Path:
        return self.get_config_dir(cli_portable) / self.config_filename

    def get_schema_path(self) -> Path:
        """Schema next to the app wins over the one shipped in the package."""
        local = self.app_dir / self.schema_dirname / self.schema_name
        if local.exists():
            return local
        return BUNDLED_SCHEMA_DIR / self.schema_name

    def load_config(self, cli_portable: bool = False) -> Dict[str, Any]:
        """Load configuration from the resolved path, validating against schema."""
        cfg: Dict[str, Any] = {}
        try:
            data = _load_json(self.get_config_path(cli_portable))
        except json.JSONDecodeError as exc:
            print(f"Warning: Could not parse configuration: {exc}. Falling back to defaults.")
            data = None
        if data is not None:
            cfg = data
        schema_path = self.get_schema_path()
        if schema_path.exists():
            try:
                _validate_json(cfg, schema_path)
            except ValueError as exc:
                print(f"Warning: {exc}. Falling back to defaults.")
                cfg = {}
        return cfg

    def save_config(self, config: Dict[str, Any], cli_portable: bool = False) -> None:
        """Write configuration to disk, validating against the schema first."""
        schema_path = self.get_schema_path()
        if schema_path.exists():
            _validate_json(config, schema_path)
        _save_json(config, self.get_config_path(cli_portable))

    def load_settings(self, cli_portable: bool = False) -> PrepSettings:
        return PrepSettings.from_config(self.load_config(cli_portable=cli_portable))
