import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

# ===============================
# Server
# ===============================
HOST: str = os.environ.get("HOST", "0.0.0.0")
PORT: int = int(os.environ.get("PORT", 8000))

# ===============================
# Move log (shared, append-only)
# ===============================
LOG_FILE: Path = Path(os.environ.get("MOVES_LOG_FILE", BASE_DIR / "moves.txt"))
LOCK_TIMEOUT: float = float(os.environ.get("LOG_LOCK_TIMEOUT", 2.0))   # seconds before giving up on the lock
LOCK_POLL_INTERVAL: float = 0.01                                       # seconds between lock attempts
LOG_TIMESTAMP_FORMAT: str = "%Y-%m-%d %H:%M:%S"

# ===============================
# Detection sessions
# ===============================
DEFAULT_SESSION_ID: str = "default"
DEFAULT_FRAME_WIDTH: int = 1280
DEFAULT_FRAME_HEIGHT: int = 720

# ===============================
# Preprocessing
# ===============================
BLUR_KERNEL: tuple = (9, 9)
BLUR_SIGMA: float = 2

# ===============================
# Checkers (HoughCircles)
# ===============================
CHECKER_MIN_DIST_DIVISOR: int = 8      # minDist = rows / divisor
CHECKER_PARAM1: int = 100
CHECKER_PARAM2: int = 30
CHECKER_MIN_RADIUS: int = 15
CHECKER_MAX_RADIUS: int = 50

# ===============================
# Dice (HoughCircles + pip blobs)
# ===============================
DICE_MIN_DIST_DIVISOR: int = 12
DICE_PARAM1: int = 100
DICE_PARAM2: int = 20
DICE_MIN_RADIUS: int = 8
DICE_MAX_RADIUS: int = 25
PIP_ROI_SIZE: int = 100                # die ROI is rescaled to this square before blob detection
PIP_MIN_AREA: float = 20
PIP_MAX_AREA: float = 600
RED_DIE_MIN_FRACTION: float = 0.3      # share of red pixels needed to call a die red

# ===============================
# Doubling cube (contours)
# ===============================
CANNY_LOW: int = 50
CANNY_HIGH: int = 150
CUBE_MIN_AREA: float = 1000
CUBE_MAX_AREA: float = 10000
CUBE_APPROX_EPSILON: float = 0.04      # fraction of the perimeter
CUBE_MIN_VERTICES: int = 4
CUBE_MAX_VERTICES: int = 6
