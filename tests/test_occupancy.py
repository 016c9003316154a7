import sys
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from pinsound_prep.categories import ClosedInterval
from pinsound_prep.errors import TargetUnreachable
from pinsound_prep.occupancy import scan_target


@pytest.fixture
def board(tmp_path: Path) -> Path:
    board = tmp_path / "board"
    board.mkdir()
    for name in ["021_kick.wav", "022-roll.wav", "105_theme.wav", "readme.txt", ".025_hidden.wav", "25_short.wav"]:
        (board / name).write_text("x", encoding="utf-8")
    (board / "030_folder").mkdir()
    return board


def test_scan_reads_prefixed_files_only(board: Path):
    state = scan_target(board)
    assert [(e.prefix, e.base_name) for e in state.entries] == [
        (21, "kick.wav"),
        (22, "roll.wav"),
        (105, "theme.wav"),
    ]
    assert state.occupied(22)
    assert not state.occupied(25)
    assert not state.occupied(30)


def test_scan_with_single_separator(board: Path):
    state = scan_target(board, separators=("_",))
    assert [e.prefix for e in state.entries] == [21, 105]


def test_scan_is_fresh_each_call(board: Path):
    assert scan_target(board).occupied(21)
    (board / "021_kick.wav").unlink()
    assert not scan_target(board).occupied(21)


def test_interval_helpers(board: Path):
    state = scan_target(board)
    interval = ClosedInterval(21, 24)
    assert [e.prefix for e in state.in_interval(interval)] == [21, 22]
    assert state.free_in(interval) == [23, 24]


def test_duplicate_base_names(board: Path):
    (board / "031_kick.wav").write_text("x", encoding="utf-8")
    state = scan_target(board)
    assert state.duplicate_base_names() == {"kick.wav": [21, 31]}
    assert [e.prefix for e in state.find_base_name("kick.wav")] == [21, 31]


def test_missing_target_is_unreachable(tmp_path: Path):
    with pytest.raises(TargetUnreachable):
        scan_target(tmp_path / "nope")


def test_file_target_is_unreachable(tmp_path: Path):
    not_a_dir = tmp_path / "file.wav"
    not_a_dir.write_text("x", encoding="utf-8")
    with pytest.raises(TargetUnreachable):
        scan_target(not_a_dir)
