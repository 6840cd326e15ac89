from datetime import datetime, timezone
from typing import List, Optional, Tuple

import cv2
import numpy as np

import config
from game_logic import CubeState, Detection, DiceState, GameStateSnapshot, compute_board_regions

CHECKER_COLOR = (0, 255, 0)      # green
RED_DIE_COLOR = (0, 0, 255)      # red
WHITE_DIE_COLOR = (255, 255, 255)
CUBE_COLOR = (0, 255, 255)       # yellow
REGION_COLOR = (255, 0, 0)       # blue


# ===============================
# --- Session State
# ===============================
class DetectorSession:
    """
    Detection state for one camera feed.

    Every detection call receives its session explicitly, so several feeds
    can be tracked side by side without sharing frames or flags.
    """

    def __init__(self, session_id=config.DEFAULT_SESSION_ID,
                 width=config.DEFAULT_FRAME_WIDTH, height=config.DEFAULT_FRAME_HEIGHT):
        self.session_id = session_id
        self.width = int(width)
        self.height = int(height)
        self.running = False
        self.frames_processed = 0
        self.last_state = GameStateSnapshot(dice=DiceState(), cube=CubeState())

    def start(self):
        self.running = True

    def stop(self):
        self.running = False

    def resize(self, width, height):
        self.width, self.height = int(width), int(height)

    def get_state(self):
        return {
            "session_id": self.session_id,
            "running": self.running,
            "frame_size": [self.width, self.height],
            "frames_processed": self.frames_processed,
        }


# ===============================
# --- Helpers
# ===============================
def preprocess(frame: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Grayscale + Gaussian blur used by every detector."""
    gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    blur = cv2.GaussianBlur(gray, config.BLUR_KERNEL, config.BLUR_SIGMA)
    return gray, blur


def get_red_mask(hsv):
    """Binary mask for red regions (covers hue wrap-around)."""
    lower_red1, upper_red1 = np.array([0, 80, 80]), np.array([10, 255, 255])
    lower_red2, upper_red2 = np.array([160, 80, 80]), np.array([179, 255, 255])
    return cv2.bitwise_or(
        cv2.inRange(hsv, lower_red1, upper_red1),
        cv2.inRange(hsv, lower_red2, upper_red2),
    )


def _find_circles(blur, min_dist, param1, param2, min_radius, max_radius):
    circles = cv2.HoughCircles(
        blur, cv2.HOUGH_GRADIENT, dp=1, minDist=min_dist,
        param1=param1, param2=param2,
        minRadius=min_radius, maxRadius=max_radius,
    )
    if circles is None:
        return []
    return [(float(x), float(y), float(r)) for x, y, r in circles[0]]


def _inside(session: DetectorSession, x, y) -> bool:
    return 0 < x < session.width and 0 < y < session.height


def _crop(image, x, y, radius):
    h, w = image.shape[:2]
    x1, y1 = max(0, int(x - radius)), max(0, int(y - radius))
    x2, y2 = min(w, int(x + radius)), min(h, int(y + radius))
    return image[y1:y2, x1:x2]


def create_pip_detector(is_dark=True) -> cv2.SimpleBlobDetector:
    """Blob detector for the dots on a die face rescaled to PIP_ROI_SIZE."""
    params = cv2.SimpleBlobDetector_Params()

    params.filterByArea = True
    params.minArea = config.PIP_MIN_AREA
    params.maxArea = config.PIP_MAX_AREA

    params.filterByCircularity = True
    params.minCircularity = 0.6

    params.filterByConvexity = True
    params.minConvexity = 0.6

    params.filterByInertia = True
    params.minInertiaRatio = 0.5

    params.filterByColor = True
    params.blobColor = 0 if is_dark else 255

    return cv2.SimpleBlobDetector_create(params)


# ===============================
# --- Detectors
# ===============================
def count_pips(frame: np.ndarray, x, y, radius) -> Optional[int]:
    """
    Count the dots on the die centered at (x, y).
    Light faces are searched for dark dots and dark faces for light ones.
    Returns None when the count is not a valid die value.
    """
    roi = _crop(frame, x, y, radius)
    if roi.size == 0:
        return None
    if roi.ndim == 3:
        roi = cv2.cvtColor(roi, cv2.COLOR_BGR2GRAY)
    roi = cv2.resize(roi, (config.PIP_ROI_SIZE, config.PIP_ROI_SIZE))

    face_is_light = float(np.mean(roi)) >= 127
    detector = create_pip_detector(is_dark=face_is_light)
    count = len(detector.detect(roi))
    return count if 1 <= count <= 6 else None


def red_fraction(frame: np.ndarray, x, y, radius) -> float:
    roi = _crop(frame, x, y, radius)
    if roi.size == 0 or roi.ndim != 3:
        return 0.0
    mask = get_red_mask(cv2.cvtColor(roi, cv2.COLOR_BGR2HSV))
    return float(np.count_nonzero(mask)) / mask.size


def detect_checkers(session: DetectorSession, gray: np.ndarray, blur: np.ndarray) -> List[Detection]:
    checkers = []
    for x, y, r in _find_circles(
        blur, gray.shape[0] / config.CHECKER_MIN_DIST_DIVISOR,
        config.CHECKER_PARAM1, config.CHECKER_PARAM2,
        config.CHECKER_MIN_RADIUS, config.CHECKER_MAX_RADIUS,
    ):
        if _inside(session, x, y):
            checkers.append(Detection(x=x, y=y, radius=r, kind="checker"))
    return checkers


def assign_dice_colors(frame: np.ndarray, candidates: List[Detection]) -> DiceState:
    """
    The reddest candidate becomes the red die if enough of it is red;
    the first remaining candidate is the white die.
    """
    if not candidates:
        return DiceState()

    fractions = [red_fraction(frame, d.x, d.y, d.radius) for d in candidates]
    red_index = int(np.argmax(fractions))
    red = None
    if fractions[red_index] >= config.RED_DIE_MIN_FRACTION:
        red = candidates[red_index]

    others = [d for d in candidates if d is not red]
    return DiceState(red=red, white=others[0] if others else None)


def detect_dice(session: DetectorSession, frame: np.ndarray, gray: np.ndarray,
                blur: np.ndarray) -> DiceState:
    candidates = []
    for x, y, r in _find_circles(
        blur, gray.shape[0] / config.DICE_MIN_DIST_DIVISOR,
        config.DICE_PARAM1, config.DICE_PARAM2,
        config.DICE_MIN_RADIUS, config.DICE_MAX_RADIUS,
    ):
        if _inside(session, x, y) and r < config.DICE_MAX_RADIUS:
            candidates.append(Detection(x=x, y=y, radius=r, kind="dice",
                                        pips=count_pips(frame, x, y, r)))
    return assign_dice_colors(frame, candidates)


def detect_doubling_cube(session: DetectorSession, blur: np.ndarray) -> CubeState:
    """Largest square-ish contour within the cube area bounds, located by its centroid."""
    edges = cv2.Canny(blur, config.CANNY_LOW, config.CANNY_HIGH)
    contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

    best, max_area = None, 0.0
    for contour in contours:
        area = cv2.contourArea(contour)
        if not config.CUBE_MIN_AREA < area < config.CUBE_MAX_AREA:
            continue

        peri = cv2.arcLength(contour, True)
        approx = cv2.approxPolyDP(contour, config.CUBE_APPROX_EPSILON * peri, True)
        if not config.CUBE_MIN_VERTICES <= len(approx) <= config.CUBE_MAX_VERTICES or area <= max_area:
            continue

        m = cv2.moments(contour)
        if m["m00"] == 0:
            continue
        cx, cy = m["m10"] / m["m00"], m["m01"] / m["m00"]
        if not _inside(session, cx, cy):
            continue

        # no reliable way to read the face yet, so the value stays unknown
        best = CubeState(x=cx, y=cy, value=None, area=float(area))
        max_area = area

    return best or CubeState()


def detect(session: DetectorSession, frame: np.ndarray) -> GameStateSnapshot:
    """
    Run one detection cycle on a BGR frame and store the result on the session.
    A stopped session returns its last snapshot untouched.
    """
    if not session.running:
        return session.last_state

    h, w = frame.shape[:2]
    if (w, h) != (session.width, session.height):
        session.resize(w, h)

    try:
        gray, blur = preprocess(frame)
        snapshot = GameStateSnapshot(
            checkers=detect_checkers(session, gray, blur),
            dice=detect_dice(session, frame, gray, blur),
            cube=detect_doubling_cube(session, blur),
            board_regions=compute_board_regions(w, h),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
    except cv2.error as e:
        print(f"❌ Board detection failed for session {session.session_id}: {e}")
        raise RuntimeError(f"Board detection failed: {e}") from e

    session.last_state = snapshot
    session.frames_processed += 1
    return snapshot


# ===============================
# --- Visualization
# ===============================
def _draw_label(img, text, x, y, color):
    (tw, th), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 0.4, 1)
    cv2.rectangle(img, (x, y - th - 4), (x + tw + 4, y + 3), (0, 0, 0), -1)
    cv2.putText(img, text, (x + 2, y), cv2.FONT_HERSHEY_SIMPLEX, 0.4, color, 1, cv2.LINE_AA)


def draw_detection(img, x, y, radius, label, color):
    cx, cy, r = int(round(x)), int(round(y)), int(round(radius or 0))
    cv2.circle(img, (cx, cy), r, color, 3)
    cv2.rectangle(img, (cx - 2, cy - 2), (cx + 2, cy + 2), color, -1)
    _draw_label(img, label, cx + r + 3, cy, color)


def draw_square(img, x, y, label, color, size=20):
    cx, cy, half = int(round(x)), int(round(y)), size // 2
    cv2.rectangle(img, (cx - half, cy - half), (cx + half, cy + half), color, 3)
    cv2.rectangle(img, (cx - 2, cy - 2), (cx + 2, cy + 2), color, -1)
    _draw_label(img, label, cx + half + 3, cy, color)


def draw_board_regions(img, regions, alpha=0.2):
    overlay = img.copy()
    for i, region in enumerate(regions):
        if i % 3 == 0:  # every third point keeps the overlay readable
            cv2.circle(overlay, (int(region.x), int(region.y)), 15, REGION_COLOR, 1, cv2.LINE_AA)
    return cv2.addWeighted(overlay, alpha, img, 1 - alpha, 0)


def draw_all_detections(frame: np.ndarray, snapshot: GameStateSnapshot) -> np.ndarray:
    """Return a copy of the frame annotated with every detection in the snapshot."""
    vis = frame.copy()

    for checker in snapshot.checkers:
        draw_detection(vis, checker.x, checker.y, checker.radius, "Checker", CHECKER_COLOR)

    if snapshot.dice is not None:
        for color, die in snapshot.dice.present():
            pips = "?" if die.pips is None else die.pips
            draw_detection(vis, die.x, die.y, die.radius, f"{color} Die ({pips})",
                           RED_DIE_COLOR if color == "Red" else WHITE_DIE_COLOR)

    if snapshot.cube is not None and snapshot.cube.is_located:
        draw_square(vis, snapshot.cube.x, snapshot.cube.y, "Cube", CUBE_COLOR)

    if snapshot.board_regions:
        vis = draw_board_regions(vis, snapshot.board_regions)

    return vis


def summarize_game_state(snapshot: GameStateSnapshot):
    """Detection count plus the short lines shown in the client's info panel."""
    summary = [f"Checkers: {len(snapshot.checkers)} detected"]
    if snapshot.dice is not None:
        for color, die in snapshot.dice.present():
            summary.append(f"{color} Die: {'?' if die.pips is None else die.pips} pips")
    if snapshot.cube is not None and snapshot.cube.is_located:
        summary.append("Doubling Cube: Detected")
    return {"detection_count": snapshot.detection_count, "summary": summary}
