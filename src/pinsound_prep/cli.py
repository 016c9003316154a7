"""Command-line interface for Pinsound Prep.

Each placement subcommand delegates to
:class:`pinsound_prep.engine.SoundPrepEngine`.  Reports are printed as
JSON.  Run ``python -m pinsound_prep --help`` for usage.

Exit codes: 0 success, 1 configuration or target error, 2 when the
requested prefix range ran out before every file was placed.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from .allocator import DecisionProvider, DuplicateResolution, PendingAsset, policy_provider
from .audio_format import FormatValidator, measure
from .categories import DEFAULT_RANGE_TABLE, SoundCategory, Variant
from .config_service import ConfigService, PrepSettings
from .engine import SoundPrepEngine
from .errors import PinsoundError, UnreadableAudio
from .occupancy import PlacedEntry

_ANSWERS = {
    "r": DuplicateResolution.REPLACE,
    "replace": DuplicateResolution.REPLACE,
    "k": DuplicateResolution.KEEP_BOTH,
    "keep": DuplicateResolution.KEEP_BOTH,
    "s": DuplicateResolution.SKIP,
    "skip": DuplicateResolution.SKIP,
}


def prompt_resolution(asset: PendingAsset, existing: Tuple[PlacedEntry, ...]) -> DuplicateResolution:
    """Ask the operator what to do with a duplicate base name."""
    names = ", ".join(e.path.name for e in existing)
    print(f"'{asset.base_name}' is already in the target as {names}.")
    while True:
        try:
            answer = input("[r]eplace existing, [k]eep both, [s]kip? ").strip().lower()
        except EOFError:
            return DuplicateResolution.SKIP
        if answer in _ANSWERS:
            return _ANSWERS[answer]
        print("Please answer r, k or s.")


def _decision_provider(choice: str) -> Optional[DecisionProvider]:
    if choice == "ask":
        return prompt_resolution if sys.stdin.isatty() else None
    return policy_provider(choice)


def _parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Pinsound Prep: prepare sound files for a pinball sound board",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_config(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--portable",
            "-p",
            action="store_true",
            help="Force portable mode (ignored if portable.flag is present)",
        )
        subparser.add_argument(
            "--app-dir",
            default=str(Path.cwd()),
            help="Application directory holding portable.flag / config.json",
        )

    def add_placement(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument("inbox", help="Folder with the source audio files")
        subparser.add_argument("target", help="Sound board folder receiving prefixed files")
        group = subparser.add_mutually_exclusive_group(required=True)
        group.add_argument(
            "--category",
            choices=[c.value for c in SoundCategory],
            help="Sound category whose prefix range is used",
        )
        group.add_argument("--range", dest="manual_range", help="Manual prefix range, e.g. 81-89")
        subparser.add_argument(
            "--variant",
            choices=[v.value for v in Variant],
            default=Variant.PRIMARY.value,
            help="Collection variant within the category",
        )
        subparser.add_argument(
            "--on-duplicate",
            choices=["ask", "replace", "keep", "skip"],
            default=None,
            help="How to resolve a base name already in the target (default: config, then ask)",
        )
        subparser.add_argument("--logs-dir", default=None, help="Where run logs are written")
        subparser.add_argument("--quiet", action="store_true", help="Only print the final report")
        add_config(subparser)

    sp = subparsers.add_parser("analyze", help="Check formats and occupancy, change nothing")
    add_placement(sp)
    sp = subparsers.add_parser("dry-run", help="Show which prefixes would be assigned")
    add_placement(sp)
    sp = subparsers.add_parser("copy", help="Place files, keeping the originals in the inbox")
    add_placement(sp)
    sp = subparsers.add_parser("move", help="Place files and remove the originals")
    add_placement(sp)

    sp = subparsers.add_parser("status", help="Show prefix usage of every category range")
    sp.add_argument("target", help="Sound board folder")
    add_config(sp)

    sp = subparsers.add_parser("strip-names", help="Remove track numbering from inbox filenames")
    sp.add_argument("inbox", help="Folder with the source audio files")
    sp.add_argument("--apply", action="store_true", help="Rename files (default only shows the plan)")
    add_config(sp)

    sp = subparsers.add_parser("check", help="Compare audio files against the board format")
    sp.add_argument("files", nargs="+", help="Audio files to check")

    return parser.parse_args(argv)


def _load_settings(args: argparse.Namespace) -> PrepSettings:
    config_service = ConfigService(app_dir=Path(args.app_dir).expanduser().resolve())
    config = config_service.load_config(cli_portable=bool(args.portable))
    if getattr(args, "logs_dir", None):
        config["logs_dir"] = args.logs_dir
    if getattr(args, "on_duplicate", None):
        config["on_duplicate"] = args.on_duplicate
    return PrepSettings.from_config(config)


def _check_files(paths: List[str]) -> int:
    validator = FormatValidator()
    results = []
    failed = False
    for raw in paths:
        try:
            verdict = validator.validate(measure(Path(raw)))
        except UnreadableAudio as exc:
            results.append({"file": raw, "passed": False, "error": str(exc)})
            failed = True
            continue
        failed = failed or not verdict.passed
        results.append({"file": raw, "passed": verdict.passed, "mismatches": [str(m) for m in verdict.mismatches]})
    print(json.dumps(results, indent=2))
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_arguments(argv)
    command = args.command

    if command == "check":
        return _check_files(args.files)

    settings = _load_settings(args)

    try:
        if command == "status":
            target = Path(args.target).expanduser().resolve()
            engine = SoundPrepEngine(inbox_dir=target, target_dir=target, settings=settings)
            print(json.dumps(engine.status(), indent=2))
            return 0

        if command == "strip-names":
            inbox = Path(args.inbox).expanduser().resolve()
            engine = SoundPrepEngine(inbox_dir=inbox, target_dir=inbox, settings=settings)
            print(json.dumps(engine.normalize_inbox_names(apply=args.apply), indent=2))
            return 0

        inbox = Path(args.inbox).expanduser().resolve()
        target = Path(args.target).expanduser().resolve()
        engine = SoundPrepEngine(
            inbox_dir=inbox,
            target_dir=target,
            settings=settings,
            decide=_decision_provider(settings.on_duplicate),
        )
        if args.manual_range:
            interval = engine.resolve_interval(args.manual_range)
        else:
            interval = DEFAULT_RANGE_TABLE.range_for(args.category, args.variant)
        report = engine.run(interval, mode=command, log_to_console=not args.quiet)
    except PinsoundError as exc:
        print(f"Error: {exc}")
        return 1

    print(json.dumps(report, indent=2))
    return 2 if report.get("exhausted") else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
