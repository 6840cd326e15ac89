import errno
import fcntl
import os
import re
from concurrent.futures import ThreadPoolExecutor

import pytest

import move_log
from game_logic import CubeState, Detection, DiceState, GameStateSnapshot
from move_log import LogWriteError, append_entries, format_game_state, log_game_state, round_half_up

TS = "2025-10-26 15:22:41"


def example_snapshot():
    return GameStateSnapshot(
        checkers=[Detection(x=120.2, y=340.1), Detection(x=179.7, y=290.0)],
        dice=DiceState(red=Detection(x=150, y=200, radius=12, kind="dice", pips=6)),
        cube=CubeState(x=50.4, y=299.5, value=1),
    )


@pytest.mark.parametrize("value,expected", [
    (120.4, 120), (339.6, 340), (120.5, 121), (2.5, 3), (0.49, 0),
    (-0.5, -1), (-1.4, -1), (7, 7), (None, 0),
])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


def test_format_full_snapshot():
    assert "".join(format_game_state(example_snapshot(), TS)) == (
        "[2025-10-26 15:22:41] === CHECKERS === (2 found)\n"
        "  - Checker at position (x:120, y:340)\n"
        "  - Checker at position (x:180, y:290)\n"
        "[2025-10-26 15:22:41] === DICE ===\n"
        "  - Red Die: 6 pips at (x:150, y:200)\n"
        "[2025-10-26 15:22:41] === DOUBLING CUBE ===\n"
        "  - Cube at (x:50, y:300), value: 1\n"
        "\n"
    )


def test_format_empty_snapshot():
    assert format_game_state(GameStateSnapshot(), TS) == [
        f"[{TS}] === CHECKERS === (0 found)\n",
        "\n",
    ]


def test_format_rounds_checker_coordinates():
    entries = format_game_state(GameStateSnapshot(checkers=[Detection(x=120.4, y=339.6)]), TS)
    assert entries[1] == "  - Checker at position (x:120, y:340)\n"


def test_format_unknown_values_use_placeholder():
    snapshot = GameStateSnapshot(
        dice=DiceState(red=Detection(x=1, y=2, kind="dice"), white=Detection(x=3, y=4, kind="dice", pips=2)),
        cube=CubeState(x=5, y=6),
    )
    entries = format_game_state(snapshot, TS)
    assert "  - Red Die: ? pips at (x:1, y:2)\n" in entries
    assert "  - White Die: 2 pips at (x:3, y:4)\n" in entries
    assert "  - Cube at (x:5, y:6), value: ?\n" in entries


def test_format_dice_header_without_dice():
    entries = format_game_state(GameStateSnapshot(dice=DiceState()), TS)
    assert entries == [
        f"[{TS}] === CHECKERS === (0 found)\n",
        f"[{TS}] === DICE ===\n",
        "\n",
    ]


def test_format_skips_cube_without_coordinates():
    entries = format_game_state(GameStateSnapshot(cube=CubeState(x=10, value=2)), TS)
    assert not any("DOUBLING CUBE" in e for e in entries)


def test_format_is_deterministic():
    first = "".join(format_game_state(example_snapshot(), TS))
    second = "".join(format_game_state(example_snapshot(), TS))
    assert first.encode("utf-8") == second.encode("utf-8")


def test_append_creates_file_and_appends(tmp_path):
    path = tmp_path / "logs" / "moves.txt"
    assert append_entries(path, ["a\n", "b\n"]) == 2
    assert append_entries(path, ["c\n"]) == 1
    assert path.read_text(encoding="utf-8") == "a\nb\nc\n"


def test_log_game_state_uses_configured_file(log_file):
    written = log_game_state(example_snapshot(), TS)
    assert written == 8
    assert log_file.read_text(encoding="utf-8").startswith(f"[{TS}] === CHECKERS === (2 found)\n")


def test_append_times_out_when_lock_is_held(tmp_path):
    path = tmp_path / "moves.txt"
    path.write_text("", encoding="utf-8")
    with open(path, "a") as holder:
        fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
        with pytest.raises(LogWriteError, match="Timed out"):
            append_entries(path, ["blocked\n"], lock_timeout=0.05)
        fcntl.flock(holder.fileno(), fcntl.LOCK_UN)
    assert path.read_text(encoding="utf-8") == ""


def test_failed_write_is_rolled_back(tmp_path, monkeypatch):
    path = tmp_path / "moves.txt"
    path.write_text("existing\n", encoding="utf-8")

    def partial_write(fd, payload):
        os.write(fd, payload[: len(payload) // 2])
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(move_log, "_write_all", partial_write)
    with pytest.raises(LogWriteError, match="No space left"):
        append_entries(path, ["first line\n", "second line\n"])
    assert path.read_text(encoding="utf-8") == "existing\n"


def test_unopenable_log_file(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    with pytest.raises(LogWriteError, match="Cannot open"):
        append_entries(blocker / "moves.txt", ["x\n"])


def test_concurrent_writers_never_interleave(tmp_path):
    path = tmp_path / "moves.txt"
    writers, rounds = 8, 25

    def write(writer):
        for _ in range(rounds):
            snapshot = GameStateSnapshot(
                checkers=[Detection(x=writer, y=i) for i in range(writer + 1)],
                dice=DiceState(white=Detection(x=writer, y=writer, kind="dice", pips=3)),
            )
            log_game_state(snapshot, f"writer-{writer}", path=path, lock_timeout=30)

    with ThreadPoolExecutor(max_workers=writers) as pool:
        list(pool.map(write, range(writers)))

    blocks = path.read_text(encoding="utf-8").split("\n\n")
    assert blocks[-1] == ""
    blocks = blocks[:-1]
    assert len(blocks) == writers * rounds

    for block in blocks:
        lines = block.split("\n")
        header = re.match(r"\[writer-(\d+)\] === CHECKERS === \((\d+) found\)$", lines[0])
        assert header, lines[0]
        writer, found = int(header.group(1)), int(header.group(2))
        assert found == writer + 1
        assert lines[1:1 + found] == [f"  - Checker at position (x:{writer}, y:{i})" for i in range(found)]
        assert lines[1 + found:] == [
            f"[writer-{writer}] === DICE ===",
            f"  - White Die: 3 pips at (x:{writer}, y:{writer})",
        ]
