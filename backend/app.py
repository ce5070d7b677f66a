import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from dotenv import load_dotenv
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from scene_agents.errors import IdentificationError, SceneFinderError, TranscriptionUnavailable, ValidationError
from scene_agents.resolver import resolve_scene
from scene_agents.transcription import transcribe_audio

load_dotenv()

DEBUG = os.getenv("DEBUG", "0") == "1"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(2 * 1024 * 1024)))
ALLOWED_TYPES = ("audio/mpeg", "audio/mp4", "audio/wav", "audio/flac", "audio/ogg")

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("scenefinder")

BASE_DIR = Path(__file__).resolve().parent
STORAGE_DIR = BASE_DIR / "storage"
TMP_DIR = STORAGE_DIR / "tmp"

TMP_DIR.mkdir(parents=True, exist_ok=True)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_BY_ERROR = (
    (ValidationError, 400),
    (TranscriptionUnavailable, 502),
    (IdentificationError, 502),
)


def _error_status(exc: SceneFinderError) -> int:
    for error_cls, status in STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status
    return 500


def _error_detail(exc: Exception) -> str:
    if DEBUG:
        return f"{type(exc).__name__}: {exc}"
    return str(exc)


def _safe_unlink(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return


def _save_upload(video: UploadFile, dest: Path) -> int:
    written = 0
    with dest.open("wb") as buffer:
        while True:
            chunk = video.file.read(64 * 1024)
            if not chunk:
                break
            written += len(chunk)
            if written > MAX_UPLOAD_BYTES:
                raise ValidationError(f"File exceeds the {MAX_UPLOAD_BYTES} byte upload limit.")
            buffer.write(chunk)
    return written


async def _resolve(transcript: str) -> dict:
    try:
        record = await run_in_threadpool(resolve_scene, transcript)
    except SceneFinderError as exc:
        logger.error("Scene resolution failed: %s", exc)
        raise HTTPException(status_code=_error_status(exc), detail=_error_detail(exc)) from exc
    return record.model_dump()


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        logger.info("Unhandled request: %s %s", request.method, request.url.path)
        return JSONResponse(status_code=404, content={"error": "Endpoint not found", "path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.get("/")
async def root():
    return {"message": "SceneFinder backend is running", "apiKeySet": bool(os.getenv("OPENAI_API_KEY"))}


@app.get("/api/health")
async def health():
    return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}


@app.post("/api/upload")
async def upload(video: UploadFile | None = File(None)):
    if not video:
        raise HTTPException(status_code=400, detail="No video file uploaded")

    logger.info("Uploaded file: %s (%s)", video.filename, video.content_type)
    if video.content_type not in ALLOWED_TYPES:
        await video.close()
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type. Only MP3, M4A, WAV, FLAC, OGG supported. Got: {video.content_type}",
        )

    suffix = Path(video.filename or "").suffix.lower()
    temp_path = TMP_DIR / f"temp-{uuid4().hex}{suffix}"

    try:
        try:
            await run_in_threadpool(_save_upload, video, temp_path)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        finally:
            await video.close()

        try:
            transcript = await run_in_threadpool(transcribe_audio, temp_path)
        except TranscriptionUnavailable as exc:
            logger.error("Transcription failed: %s", exc)
            raise HTTPException(status_code=502, detail=_error_detail(exc)) from exc
    finally:
        _safe_unlink(temp_path)

    data = await _resolve(transcript)
    return {"success": True, "transcript": transcript, "data": data}


@app.post("/api/resolve")
async def resolve(payload: dict):
    transcript = payload.get("transcript")
    if not isinstance(transcript, str) or not transcript.strip():
        raise HTTPException(status_code=400, detail="transcript is required")

    data = await _resolve(transcript)
    return {"success": True, "data": data}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("app:app", host="0.0.0.0", port=port, reload=True)
