"""Core engine for Pinsound Prep.

The :class:`SoundPrepEngine` takes every audio file in an inbox
directory, normalises its name, makes sure it matches the sound board's
format (converting it with the external converter when it does not),
allocates a numeric prefix inside the requested interval and commits
it into the target directory.

Design notes / safety defaults:
- The target directory is listed fresh before every allocation so that
  files placed earlier in the same batch, and files removed by hand
  between runs, are always taken into account.
- A base name that is already present in the target directory is never
  placed silently; a decision provider chooses replace, keep both or
  skip.
- Conversion output goes to a temporary staging folder, never the
  target, and failed conversions leave the source untouched.
- Running out of prefixes stops the batch.  Files already placed stay
  placed; the rest are reported as unplaced.
- Only one writer per target directory is supported.  Two runs against
  the same target at the same time can assign the same prefix twice.

This engine is UI-agnostic.  Interactive prompting lives in the CLI and
is injected through ``decide``.
"""

from __future__ import annotations

import csv
import datetime
import json
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypedDict, Union

from .allocator import (
    DecisionProvider,
    DuplicateResolution,
    Exhausted,
    PendingAsset,
    PrefixAllocator,
    Reject,
    policy_provider,
)
from .audio_format import FormatValidator, ValidationResult, measure
from .categories import DEFAULT_RANGE_TABLE, CategoryRangeTable, ClosedInterval, manual_interval, parse_interval
from .config_service import PrepSettings
from .conversion import FfmpegConverter, FfprobeProbe, needs_sanitizing
from .errors import ConversionFailed, MetadataProbeFailed, UnreadableAudio, ValidationFailed
from .naming import strip_track_prefix
from .occupancy import DirectoryState, PlacedEntry, ensure_target, scan_target
from .writer import TargetWriter

MODES = ("analyze", "dry-run", "copy", "move")

IntervalSpec = Union[ClosedInterval, Tuple[Any, Any], str]

UNREADABLE_REASON = "format: unreadable, needs conversion"


class FileEntry(TypedDict, total=False):
    source: str
    base_name: str
    prefix: Optional[int]
    dest: str
    action: str
    reason: str
    converted: bool
    mismatches: List[str]
    conflicts: List[str]


@dataclass
class _Prepared:
    """Result of name normalisation and format checks for one file."""

    source: Path
    base_name: str
    verdict: ValidationResult
    convert_reason: str = ""
    staged: Optional[Path] = None

    @property
    def needs_conversion(self) -> bool:
        return bool(self.convert_reason)


@dataclass
class SoundPrepEngine:
    """Pinsound Prep engine responsible for conversion and prefix placement."""

    inbox_dir: Path
    target_dir: Path
    settings: PrepSettings = field(default_factory=PrepSettings)
    converter: Any = None
    probe: Any = None
    decide: Optional[DecisionProvider] = None
    validator: FormatValidator = field(default_factory=FormatValidator)
    range_table: CategoryRangeTable = DEFAULT_RANGE_TABLE

    current_mode: str = field(init=False, default="analyze")
    _log_sink: Optional[Callable[[str], None]] = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        self.inbox_dir = Path(self.inbox_dir)
        self.target_dir = Path(self.target_dir)
        if self.converter is None:
            self.converter = FfmpegConverter(self.settings.ffmpeg)
        if self.probe is None:
            self.probe = FfprobeProbe(self.settings.ffprobe)
        if self.decide is None and self.settings.on_duplicate != "ask":
            self.decide = policy_provider(self.settings.on_duplicate)

    def _logs_root_dir(self) -> Path:
        """Run logs never go inside the target; the board reads that folder."""
        if self.settings.logs_dir is not None:
            return Path(self.settings.logs_dir)
        return self.inbox_dir / "logs"

    # ------------------------------------------------------------------
    # Discovery / ignore logic
    def _should_ignore(self, name: str) -> bool:
        for rule in self.settings.ignore_rules:
            if name == rule or name.startswith(rule):
                return True
        return False

    def discover_inputs(self) -> List[Path]:
        """Return audio files under the inbox in deterministic order."""
        if not self.inbox_dir.exists():
            return []
        logs_root = self._logs_root_dir().resolve()
        extensions = {e.lower() for e in self.settings.audio_extensions}
        found: List[Path] = []
        for root, dirs, files in os.walk(self.inbox_dir):
            root_path = Path(root)
            dirs[:] = sorted(
                d for d in dirs if not self._should_ignore(d) and (root_path / d).resolve() != logs_root
            )
            for fname in sorted(files):
                if self._should_ignore(fname):
                    continue
                file_path = root_path / fname
                if file_path.suffix.lower() in extensions and file_path.is_file():
                    found.append(file_path)
        return found

    def normalize_inbox_names(self, apply: bool = False) -> Dict[str, Any]:
        """Strip track numbering from inbox filenames in place.

        Without ``apply`` only the plan is returned.  A rename whose
        destination already exists is skipped, never overwritten.
        """
        renamed: List[Dict[str, str]] = []
        skipped: List[Dict[str, str]] = []
        for source in self.discover_inputs():
            new_name = strip_track_prefix(source.name)
            if new_name == source.name:
                continue
            dest = source.with_name(new_name)
            if dest.exists():
                skipped.append({"file": str(source), "reason": f"{new_name} already exists"})
                continue
            if apply:
                source.rename(dest)
            renamed.append({"file": str(source), "new_name": new_name})
        return {"applied": apply, "renamed": renamed, "skipped": skipped}

    # ------------------------------------------------------------------
    # Interval resolution
    def resolve_interval(self, selection: IntervalSpec) -> ClosedInterval:
        """Turn an interval, ``(category, variant)`` pair or ``"LOW-HIGH"`` into a checked interval."""
        if isinstance(selection, ClosedInterval):
            return manual_interval(selection.low, selection.high)
        if isinstance(selection, str):
            return parse_interval(selection)
        category, variant = selection
        return self.range_table.range_for(category, variant)

    # ------------------------------------------------------------------
    # Format checks / conversion
    @staticmethod
    def target_base_name(source: Path) -> str:
        """Normalised base name; placed files are always ``.wav``."""
        stripped = Path(strip_track_prefix(source.name))
        return f"{stripped.stem}.wav"

    def _inspect(self, source: Path) -> _Prepared:
        base_name = self.target_base_name(source)
        try:
            props = measure(source)
        except UnreadableAudio:
            # soundfile cannot decode everything ffmpeg can (AAC, for one).
            return _Prepared(
                source=source,
                base_name=base_name,
                verdict=ValidationResult(),
                convert_reason=UNREADABLE_REASON,
            )
        verdict = self.validator.validate(props)
        prepared = _Prepared(source=source, base_name=base_name, verdict=verdict)
        if not verdict.passed:
            prepared.convert_reason = f"format: {verdict.describe()}"
        elif self.settings.strip_metadata:
            try:
                tags = self.probe.probe(source)
            except MetadataProbeFailed as exc:
                self._warn(f"Metadata probe skipped for {source.name}: {exc}")
                tags = {}
            if needs_sanitizing(tags):
                prepared.convert_reason = "metadata: " + ", ".join(sorted(tags))
        return prepared

    def _stage(self, prepared: _Prepared, staging_dir: Path, index: int) -> None:
        """Convert into the staging folder and re-check the result."""
        out_path = staging_dir / f"{index:04d}_{prepared.base_name}"
        title = Path(prepared.base_name).stem if self.settings.tag_title else None
        self.converter.convert(prepared.source, out_path, self.validator.profile, title=title)
        try:
            verdict = self.validator.validate(measure(out_path))
        except UnreadableAudio as exc:
            out_path.unlink(missing_ok=True)
            raise ValidationFailed(f"Converted file unreadable: {exc}") from exc
        if not verdict.passed:
            out_path.unlink(missing_ok=True)
            raise ValidationFailed(
                f"Converted file still off-profile: {verdict.describe()}",
                mismatches=verdict.mismatches,
            )
        prepared.staged = out_path

    # ------------------------------------------------------------------
    # Logging helpers
    def _warn(self, msg: str) -> None:
        if self._log_sink is not None:
            self._log_sink(f"Warning: {msg}")
        else:
            print(f"Warning: {msg}")

    # ------------------------------------------------------------------
    # Reporting
    def _occupancy_summary(self, state: DirectoryState, interval: ClosedInterval) -> Dict[str, Any]:
        used = sorted({e.prefix for e in state.in_interval(interval)})
        free = state.free_in(interval)
        return {
            "interval": str(interval),
            "used": used,
            "free": len(free),
            "first_free": free[0] if free else None,
            "total_files": len(state),
        }

    def status(self) -> Dict[str, Any]:
        """Read-only occupancy of every table range plus duplicates."""
        state = scan_target(ensure_target(self.target_dir), self.settings.accepted_separators)
        ranges: Dict[str, Any] = {}
        covered = set()
        for (category, variant), interval in self.range_table.items():
            summary = self._occupancy_summary(state, interval)
            del summary["total_files"]
            ranges[f"{category.value}/{variant.value}"] = summary
            covered.update(interval)
        return {
            "target": str(self.target_dir.resolve()),
            "total_files": len(state),
            "ranges": ranges,
            "outside_ranges": sorted({e.prefix for e in state.entries if e.prefix not in covered}),
            "duplicate_base_names": state.duplicate_base_names(),
        }

    def _entry(
        self,
        source: Path,
        action: str,
        reason: str = "",
        prepared: Optional[_Prepared] = None,
        prefix: Optional[int] = None,
        dest: Optional[Path] = None,
    ) -> FileEntry:
        entry: FileEntry = {
            "source": str(source),
            "base_name": prepared.base_name if prepared else self.target_base_name(source),
            "prefix": prefix,
            "dest": str(dest) if dest else "",
            "action": action,
            "reason": reason,
            "converted": bool(prepared and prepared.needs_conversion),
        }
        if prepared and not prepared.verdict.passed:
            entry["mismatches"] = [str(m) for m in prepared.verdict.mismatches]
        return entry

    # ------------------------------------------------------------------
    # Duplicate handling
    def _resolve_duplicate(self, asset: PendingAsset, existing: Tuple[PlacedEntry, ...]) -> DuplicateResolution:
        if self.decide is None:
            # No provider configured: leave the asset unplaced, never place silently.
            return DuplicateResolution.SKIP
        return self.decide(asset, existing)

    # ------------------------------------------------------------------
    def run(
        self,
        interval: IntervalSpec,
        mode: str = "analyze",
        log_callback: Optional[Callable[[str], None]] = None,
        log_to_console: bool = True,
    ) -> Dict[str, Any]:
        """Execute a batch against one interval.

        Hard rules:
        - analyze: MUST NOT write anywhere (no logs, no conversion, no placement)
        - dry-run: may write logs/reports, but MUST NOT convert, place or delete
        - copy/move: convert, place and write logs; move also removes sources
          after successful placement

        Raises ``TargetUnreachable``, ``UnknownCategory`` or
        ``MalformedInterval`` before anything is read from the inbox.
        Returns a report dict each run.
        """
        mode = (mode or "analyze").lower().strip()
        if mode not in MODES:
            raise ValueError(f"Unknown mode: {mode}")
        target = ensure_target(self.target_dir)
        resolved = self.resolve_interval(interval)
        self.current_mode = mode

        write_logs = mode != "analyze"
        do_transfer = mode in {"copy", "move"}
        separators = self.settings.accepted_separators

        log_handle = None

        def _emit_log(msg: str) -> None:
            if log_to_console:
                print(msg)
            if log_callback is not None:
                try:
                    log_callback(msg)
                except Exception:
                    pass
            if log_handle:
                log_handle.write(msg + "\n")
                log_handle.flush()

        self._log_sink = _emit_log

        run_id = datetime.datetime.now().strftime("%Y%m%d_%H%M%S_") + uuid.uuid4().hex[:8]
        initial_state = scan_target(target, separators)
        report: Dict[str, Any] = {
            "run_id": run_id,
            "mode": mode,
            "timestamp": datetime.datetime.now().isoformat(),
            "inbox": str(self.inbox_dir.resolve()),
            "target": str(target.resolve()),
            "interval": str(resolved),
            "interval_label": self.range_table.label_for(resolved),
            "files_processed": 0,
            "files_placed": 0,
            "files_planned": 0,
            "files_converted": 0,
            "replaced": 0,
            "duplicates_kept": 0,
            "skipped_duplicates": 0,
            "failed": 0,
            "unplaced": 0,
            "exhausted": False,
            "files": [],
            "occupancy_before": self._occupancy_summary(initial_state, resolved),
        }

        inputs = self.discover_inputs()

        if mode == "analyze":
            _emit_log(f"Pinsound Prep run_id={run_id} mode={mode}")
            _emit_log(f"Target: {target} interval={resolved} ({report['interval_label']})")
            _emit_log(f"Files discovered: {len(inputs)}")
            for source in inputs:
                report["files_processed"] += 1
                base_name = self.target_base_name(source)
                try:
                    verdict = self.validator.validate(measure(source))
                except UnreadableAudio:
                    prepared = _Prepared(source, base_name, ValidationResult(), convert_reason=UNREADABLE_REASON)
                else:
                    prepared = _Prepared(source=source, base_name=base_name, verdict=verdict)
                    if not verdict.passed:
                        prepared.convert_reason = f"format: {verdict.describe()}"
                dupes = initial_state.find_base_name(base_name)
                entry = self._entry(
                    source,
                    "NONE",
                    prepared.convert_reason or "conformant",
                    prepared=prepared,
                )
                if dupes:
                    entry["conflicts"] = [str(e.path.name) for e in dupes]
                report["files"].append(entry)
            _emit_log(f"Done. processed={report['files_processed']} failed={report['failed']}")
            self._log_sink = None
            return report

        log_dir: Optional[Path] = None
        audit_path: Optional[Path] = None
        report_path: Optional[Path] = None
        if write_logs:
            log_dir = self._logs_root_dir() / run_id
            log_dir.mkdir(parents=True, exist_ok=True)
            audit_path = log_dir / "audit.csv"
            report_path = log_dir / "run_report.json"
            log_handle = open(log_dir / "run_log.txt", "w", encoding="utf-8", buffering=1)

        audit_file = None
        audit_writer = None
        staging = tempfile.TemporaryDirectory(prefix="pinsound_") if do_transfer else None
        batch = _Batch(
            allocator=PrefixAllocator(resolved),
            writer=TargetWriter(target, self.settings.separator, mode if do_transfer else "copy"),
            separators=separators,
            planned=initial_state,
            dry_run=mode == "dry-run",
            staging_dir=Path(staging.name) if staging else None,
        )

        _emit_log(f"Pinsound Prep run_id={run_id} mode={mode}")
        _emit_log(f"Target: {target} interval={resolved} ({report['interval_label']})")
        _emit_log(f"Files discovered: {len(inputs)}")

        try:
            if do_transfer and audit_path:
                audit_file = open(audit_path, "w", newline="", encoding="utf-8")
                audit_writer = csv.writer(audit_file)
                audit_writer.writerow(["file", "base_name", "prefix", "dest", "action", "reason"])

            for index, source in enumerate(inputs):
                report["files_processed"] += 1
                entry = self._place_one(index, source, batch, report)
                report["files"].append(entry)
                _emit_log(
                    f"{entry['action']}: {source.name}"
                    + (f" -> {Path(entry['dest']).name}" if entry.get("dest") else "")
                    + (f" ({entry['reason']})" if entry.get("reason") else "")
                )
                if audit_writer:
                    audit_writer.writerow(
                        [
                            entry["source"],
                            entry["base_name"],
                            "" if entry["prefix"] is None else f"{entry['prefix']:03d}",
                            entry["dest"],
                            entry["action"],
                            entry["reason"],
                        ]
                    )

            if report["exhausted"]:
                _emit_log(
                    f"Range {resolved} exhausted: {report['unplaced']} file(s) left unplaced. "
                    "Free prefixes in the target or choose another range."
                )
            _emit_log(
                f"Done. processed={report['files_processed']} "
                f"placed={report['files_placed']} planned={report['files_planned']} "
                f"converted={report['files_converted']} replaced={report['replaced']} "
                f"failed={report['failed']} skipped_duplicates={report['skipped_duplicates']} "
                f"unplaced={report['unplaced']}"
            )
        finally:
            if audit_file:
                audit_file.close()
            if staging is not None:
                staging.cleanup()
            self._log_sink = None
            if log_handle:
                log_handle.close()

        final_state = batch.current_state()
        report["occupancy_after"] = self._occupancy_summary(final_state, resolved)
        if write_logs and report_path:
            report_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
        return report

    def _place_one(self, index: int, source: Path, batch: "_Batch", report: Dict[str, Any]) -> FileEntry:
        """Prepare, allocate and (unless dry-run) commit a single file."""
        dry_run = self.current_mode == "dry-run"
        allocator = batch.allocator
        if report["exhausted"]:
            report["unplaced"] += 1
            return self._entry(source, "UNPLACED", f"range {allocator.interval} exhausted")

        try:
            prepared = self._inspect(source)
            if prepared.needs_conversion and batch.staging_dir is not None:
                self._stage(prepared, batch.staging_dir, index)
        except (UnreadableAudio, ConversionFailed, ValidationFailed) as exc:
            report["failed"] += 1
            entry = self._entry(source, "FAILED", str(exc))
            if isinstance(exc, ValidationFailed) and exc.mismatches:
                entry["mismatches"] = [str(m) for m in exc.mismatches]
            return entry

        asset = PendingAsset(prepared.base_name, source, allocator.interval)
        state = batch.current_state()
        notes: List[str] = []
        if prepared.needs_conversion:
            notes.append(f"convert ({prepared.convert_reason})")
        to_remove: Tuple[PlacedEntry, ...] = ()
        kept_duplicate = False

        decision = allocator.allocate(asset, state)
        if isinstance(decision, Reject):
            names = ", ".join(e.path.name for e in decision.existing)
            resolution = self._resolve_duplicate(asset, decision.existing)
            if resolution is DuplicateResolution.SKIP:
                report["skipped_duplicates"] += 1
                self._discard(prepared)
                entry = self._entry(source, "SKIPPED_DUPLICATE", f"already placed as {names}", prepared=prepared)
                entry["conflicts"] = [e.path.name for e in decision.existing]
                return entry
            if resolution is DuplicateResolution.REPLACE:
                # Allocate as if the old entries were gone; delete them only once a slot is certain.
                to_remove = decision.existing
                decision = allocator.allocate(asset, state.without(to_remove))
                notes.append(f"replaced {names}")
            else:
                kept_duplicate = True
                decision = allocator.allocate(asset, state, allow_duplicate=True)
                notes.append(f"duplicate of {names} kept")

        if isinstance(decision, Exhausted):
            report["exhausted"] = True
            report["unplaced"] += 1
            self._discard(prepared)
            return self._entry(source, "UNPLACED", f"range {decision.interval} exhausted", prepared=prepared)

        prefix = decision.prefix
        reason = "; ".join(notes)
        dest = batch.writer.destination(prefix, prepared.base_name)

        if dry_run:
            self._count_resolution(report, to_remove, kept_duplicate)
            batch.planned = batch.planned.without(to_remove).with_entry(PlacedEntry(prefix, prepared.base_name, dest))
            report["files_planned"] += 1
            return self._entry(source, "PLAN", reason, prepared=prepared, prefix=prefix, dest=dest)

        # Replaced entries are hidden, not deleted, until the new file is in place.
        hidden: List[Tuple[Path, PlacedEntry]] = []
        try:
            for existing in to_remove:
                hidden.append((batch.writer.set_aside(existing), existing))
            if prepared.staged is not None:
                placed = batch.writer.commit(prepared.staged, prefix, prepared.base_name, mode="move")
                prepared.staged = None
            else:
                placed = batch.writer.commit(source, prefix, prepared.base_name)
        except OSError as exc:
            report["failed"] += 1
            self._discard(prepared)
            self._restore(batch.writer, hidden)
            return self._entry(source, "FAILED", f"{self.current_mode} failed: {exc}", prepared=prepared, prefix=prefix)

        for hidden_path, existing in hidden:
            try:
                hidden_path.unlink()
            except OSError as exc:
                self._warn(f"Could not delete replaced {existing.path.name} (left as {hidden_path.name}): {exc}")

        report["files_placed"] += 1
        self._count_resolution(report, to_remove, kept_duplicate)
        if prepared.needs_conversion:
            report["files_converted"] += 1
            if self.current_mode == "move":
                try:
                    source.unlink()
                except OSError as exc:
                    self._warn(f"Placed {placed.path.name} but could not remove source {source.name}: {exc}")
        return self._entry(source, self.current_mode.upper(), reason, prepared=prepared, prefix=prefix, dest=placed.path)

    @staticmethod
    def _count_resolution(report: Dict[str, Any], replaced: Tuple[PlacedEntry, ...], kept_duplicate: bool) -> None:
        if replaced:
            report["replaced"] += 1
        elif kept_duplicate:
            report["duplicates_kept"] += 1

    def _restore(self, writer: TargetWriter, hidden: List[Tuple[Path, PlacedEntry]]) -> None:
        for hidden_path, existing in hidden:
            try:
                writer.restore(hidden_path, existing)
            except OSError as exc:
                self._warn(f"Could not restore {existing.path.name} from {hidden_path.name}: {exc}")

    @staticmethod
    def _discard(prepared: _Prepared) -> None:
        if prepared.staged is not None:
            prepared.staged.unlink(missing_ok=True)
            prepared.staged = None


@dataclass
class _Batch:
    """Per-run allocation context.

    ``planned`` is only used in dry-run mode, where nothing is written
    and the occupancy has to be simulated.  Otherwise every allocation
    reads a fresh listing of the target directory.
    """

    allocator: PrefixAllocator
    writer: TargetWriter
    separators: Tuple[str, ...]
    planned: DirectoryState
    dry_run: bool = False
    staging_dir: Optional[Path] = None

    def current_state(self) -> DirectoryState:
        if self.dry_run:
            return self.planned
        return scan_target(self.writer.target_dir, self.separators)
