import fcntl
import math
import os
import time
from pathlib import Path
from typing import List, Optional

import config
from game_logic import GameStateSnapshot


class LogWriteError(RuntimeError):
    """Raised when a game-state entry could not be appended to the move log."""


# ===============================
# --- Formatting
# ===============================
def round_half_up(value) -> int:
    """Round to the nearest integer, halves away from zero. Missing values log as 0."""
    if value is None:
        return 0
    value = float(value)
    rounded = int(math.floor(abs(value) + 0.5))
    return rounded if value >= 0 else -rounded


def _marker(value) -> str:
    return "?" if value is None else str(value)


def format_game_state(snapshot: GameStateSnapshot, timestamp: str) -> List[str]:
    """
    Turn a snapshot into the newline-terminated entries written to the move log.

    Section headers carry the "[timestamp] " prefix, detail lines are indented
    without it, and the block always ends with a blank line:

        [2025-10-26 15:22:41] === CHECKERS === (1 found)
          - Checker at position (x:120, y:340)
        [2025-10-26 15:22:41] === DICE ===
          - Red Die: 6 pips at (x:150, y:200)
    """
    prefix = f"[{timestamp}] "
    entries = [f"{prefix}=== CHECKERS === ({len(snapshot.checkers)} found)\n"]
    for checker in snapshot.checkers:
        entries.append(
            f"  - Checker at position (x:{round_half_up(checker.x)}, y:{round_half_up(checker.y)})\n"
        )

    if snapshot.dice is not None:
        entries.append(f"{prefix}=== DICE ===\n")
        for color, die in snapshot.dice.present():
            entries.append(
                f"  - {color} Die: {_marker(die.pips)} pips at "
                f"(x:{round_half_up(die.x)}, y:{round_half_up(die.y)})\n"
            )

    cube = snapshot.cube
    if cube is not None and cube.is_located:
        entries.append(f"{prefix}=== DOUBLING CUBE ===\n")
        entries.append(
            f"  - Cube at (x:{round_half_up(cube.x)}, y:{round_half_up(cube.y)}), "
            f"value: {_marker(cube.value)}\n"
        )

    entries.append("\n")
    return entries


# ===============================
# --- Locked append
# ===============================
def _acquire_lock(fd: int, timeout: float, path: Path):
    deadline = time.monotonic() + timeout
    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return
        except BlockingIOError:
            if time.monotonic() >= deadline:
                raise LogWriteError(f"Timed out after {timeout:.2f}s waiting for lock on {path}")
            time.sleep(config.LOCK_POLL_INTERVAL)


def _write_all(fd: int, payload: bytes):
    view = memoryview(payload)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def append_entries(path, entries: List[str], lock_timeout: Optional[float] = None) -> int:
    """
    Append entries to the log as one block while holding an exclusive lock.

    Either the whole block lands in the file or none of it does: a failed
    write truncates the file back to the size it had before the attempt.
    Returns the number of entries written.
    """
    if lock_timeout is None:
        lock_timeout = config.LOCK_TIMEOUT
    path = Path(path)
    payload = "".join(entries).encode("utf-8")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
    except OSError as e:
        raise LogWriteError(f"Cannot open log file {path}: {e}") from e

    try:
        try:
            _acquire_lock(fd, lock_timeout, path)
        except OSError as e:
            raise LogWriteError(f"Cannot lock log file {path}: {e}") from e

        offset = os.lseek(fd, 0, os.SEEK_END)
        try:
            _write_all(fd, payload)
            os.fsync(fd)
        except OSError as e:
            try:
                os.ftruncate(fd, offset)
            except OSError as rollback_error:
                print(f"❌ Could not roll back partial write to {path}: {rollback_error}")
            raise LogWriteError(f"Failed to write to log file {path}: {e}") from e
    finally:
        # closing the descriptor also drops the flock
        os.close(fd)

    return len(entries)


def log_game_state(snapshot: GameStateSnapshot, timestamp: str, path=None,
                   lock_timeout: Optional[float] = None) -> int:
    """Format a snapshot and append it to the move log. Returns the entry count."""
    entries = format_game_state(snapshot, timestamp)
    written = append_entries(path or config.LOG_FILE, entries, lock_timeout=lock_timeout)
    print(f"📝 Logged {len(snapshot.checkers)} checker(s) at {timestamp}")
    return written
