# src/pinsound_prep/__main__.py
from __future__ import annotations


def main() -> int:
    """
    Module entrypoint:
      - python -m pinsound_prep            -> CLI usage
      - python -m pinsound_prep <command>  -> CLI command
    """
    from pinsound_prep.cli import main as cli_main

    # Let the CLI parse sys.argv itself.
    return int(cli_main())


if __name__ == "__main__":
    raise SystemExit(main())
