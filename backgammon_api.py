import base64
from datetime import datetime
from typing import Dict, List, Optional

import cv2
import numpy as np
import uvicorn
from fastapi import FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, field_validator

import config
from board_detection import DetectorSession, detect, draw_all_detections, summarize_game_state
from game_logic import GameStateSnapshot, compute_board_regions
from move_log import LogWriteError, log_game_state

VERSION = "1.0.0"


# ===============================
# --- Request Models
# ===============================
class SubmissionModel(BaseModel):
    # Infinity, NaN and overflowing literals like 1e400 are not board coordinates
    model_config = ConfigDict(allow_inf_nan=False)


class DetectionModel(SubmissionModel):
    x: Optional[float] = None
    y: Optional[float] = None
    radius: Optional[float] = None
    pips: Optional[int] = None


class DiceModel(SubmissionModel):
    red: Optional[DetectionModel] = None
    white: Optional[DetectionModel] = None


class CubeModel(SubmissionModel):
    x: Optional[float] = None
    y: Optional[float] = None
    value: Optional[int] = None
    area: Optional[float] = None


class GameStateModel(SubmissionModel):
    checkers: List[DetectionModel] = []
    dice: Optional[DiceModel] = None
    cube: Optional[CubeModel] = None


class SaveMoveRequest(SubmissionModel):
    gameState: GameStateModel
    timestamp: datetime   # ISO 8601, validated only; the log uses the server clock

    @field_validator("timestamp", mode="before")
    @classmethod
    def timestamp_must_be_text(cls, value):
        if not isinstance(value, str):
            raise ValueError("timestamp must be an ISO 8601 string")
        return value


# ===============================
# --- Detection Sessions
# ===============================
sessions: Dict[str, DetectorSession] = {}


def log_timestamp() -> str:
    return datetime.now().strftime(config.LOG_TIMESTAMP_FORMAT)


def decode_image(contents: bytes):
    if not contents:
        return None
    npimg = np.frombuffer(contents, np.uint8)
    return cv2.imdecode(npimg, cv2.IMREAD_COLOR)


# ===============================
# --- FastAPI App
# ===============================
app = FastAPI(title="Backgammon Vision API", version=VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def invalid_request_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]
    print(f"❌ Rejected request to {request.url.path}: {details}")
    return JSONResponse({"error": "Invalid data format", "details": details}, status_code=400)


@app.on_event("startup")
async def startup_event():
    print("🚀 Backgammon Vision API starting up...")
    print(f"🌐 Host: {config.HOST}")
    print(f"🔌 Port: {config.PORT}")
    print(f"📝 Move log: {config.LOG_FILE}")
    print("✅ API ready to receive requests on port " + str(config.PORT))


# ===============================
# --- Move Log
# ===============================
@app.post("/save-move")
@app.post("/php/save_move.php")
def save_move(request: SaveMoveRequest):
    """Append a submitted game state to the shared move log."""
    snapshot = GameStateSnapshot.from_dict(request.gameState.model_dump())
    timestamp = log_timestamp()

    try:
        logged = log_game_state(snapshot, timestamp)
    except LogWriteError as e:
        print(f"❌ Failed to log game state: {e}")
        return JSONResponse({"error": "Server error", "message": str(e)}, status_code=500)

    return {"success": True, "logged": logged, "timestamp": timestamp}


@app.get("/board-regions")
def board_regions(width: float = Query(..., gt=0), height: float = Query(..., gt=0)):
    """The 24 board points for a board image of the given size."""
    return {
        "status": "success",
        "regions": [p.to_dict() for p in compute_board_regions(width, height)],
    }


# ===============================
# --- Live Detection
# ===============================
@app.post("/start-detection")
async def start_detection(
    session_id: str = config.DEFAULT_SESSION_ID,
    width: int = Query(config.DEFAULT_FRAME_WIDTH, gt=0),
    height: int = Query(config.DEFAULT_FRAME_HEIGHT, gt=0),
):
    """Create (or restart) a detection session for one camera feed."""
    session = sessions.get(session_id)
    if session is None:
        session = DetectorSession(session_id, width, height)
        sessions[session_id] = session
    else:
        session.resize(width, height)
    session.start()
    print(f"🎯 Detection started for session {session_id} ({width}x{height})")

    return {
        "status": "success",
        "message": "Detection started",
        "session": session.get_state(),
    }


@app.post("/stop-detection")
async def stop_detection(session_id: str = config.DEFAULT_SESSION_ID):
    session = sessions.get(session_id)
    if session is None:
        return JSONResponse({"error": "Detection session not started"}, status_code=400)

    session.stop()
    print(f"🎯 Detection stopped for session {session_id}")
    return {
        "status": "success",
        "message": "Detection stopped",
        "session": session.get_state(),
    }


@app.post("/detect")
def detect_frame(
    file: UploadFile = File(...),
    session_id: str = config.DEFAULT_SESSION_ID,
    log: bool = False,
):
    """
    Detect checkers, dice and the doubling cube in one camera frame.

    Returns the game state, the detection summary and a base64 PNG of the
    annotated frame. With log=true the game state is also appended to the
    move log.
    """
    session = sessions.get(session_id)
    if session is None:
        return JSONResponse({"error": "Detection session not started"}, status_code=400)

    image = decode_image(file.file.read())
    if image is None:
        return JSONResponse({"error": "Invalid image"}, status_code=400)

    try:
        snapshot = detect(session, image)
    except RuntimeError as e:
        return JSONResponse({"error": str(e)}, status_code=500)

    summary = summarize_game_state(snapshot)

    logged = None
    if log and session.running:
        try:
            logged = log_game_state(snapshot, log_timestamp())
        except LogWriteError as e:
            print(f"❌ Failed to log game state: {e}")
            return JSONResponse({"error": "Server error", "message": str(e)}, status_code=500)

    vis_img = draw_all_detections(image, snapshot)
    _, buf = cv2.imencode(".png", vis_img)
    img_b64 = base64.b64encode(buf).decode("utf-8")

    return {
        "status": "success",
        "session": session.get_state(),
        "detection_count": summary["detection_count"],
        "summary": summary["summary"],
        "game_state": snapshot.to_dict(),
        "logged": logged,
        "visualization": img_b64,
    }


@app.get("/game-state")
async def get_game_state(session_id: str = config.DEFAULT_SESSION_ID):
    """Last game state seen by a session."""
    session = sessions.get(session_id)
    if session is None:
        return JSONResponse({"error": "Detection session not started"}, status_code=400)

    return {
        "status": "success",
        "session": session.get_state(),
        "game_state": session.last_state.to_dict(),
    }


# ===============================
# --- Service
# ===============================
@app.get("/")
def root():
    return {
        "status": "Backgammon Vision API is running",
        "version": VERSION,
        "endpoints": [
            "/save-move (POST)",
            "/php/save_move.php (POST)",
            "/board-regions (GET)",
            "/start-detection (POST)",
            "/stop-detection (POST)",
            "/detect (POST)",
            "/game-state (GET)",
            "/ping (GET)",
            "/healthz (GET)",
        ]
    }


@app.get("/ping")
def ping():
    return {"pong": True, "timestamp": datetime.now().isoformat()}


@app.get("/healthz")
def healthz():
    import psutil
    memory_info = psutil.virtual_memory()

    return {
        "ok": True,
        "memory_usage": {
            "total": f"{memory_info.total / (1024**3):.2f} GB",
            "available": f"{memory_info.available / (1024**3):.2f} GB",
            "percent": f"{memory_info.percent:.1f}%",
        },
        "move_log": str(config.LOG_FILE),
        "active_sessions": sum(1 for s in sessions.values() if s.running),
    }


# ===============================
# --- Run
# ===============================
if __name__ == "__main__":
    print(f"🚀 Starting Backgammon Vision API on port {config.PORT}")
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level="info", access_log=True)
