"""File upload endpoint for offline practice scoring."""

import logging
import os
import tempfile

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from tapmeter.api.schemas import ScoreResponse, result_to_response
from tapmeter.analysis.engine import ScoringEngine
from tapmeter.audio.loader import RecordingTooShortError
from tapmeter.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = {".wav", ".mp3", ".flac", ".ogg", ".m4a", ".aac", ".webm"}
MAX_BEATS = 10000


@router.post("/score", response_model=ScoreResponse)
async def score_file(
    file: UploadFile = File(...),
    bpm: float = Form(...),
    beats: int | None = Form(None),
    offset_ms: float = Form(0.0),
    tolerance_ms: float | None = Form(None),
):
    """Detect taps in an uploaded recording and score them against a metronome grid."""
    # Validate file
    suffix = ""
    if file.filename and "." in file.filename:
        suffix = "." + file.filename.rsplit(".", 1)[-1].lower()
        if suffix not in ALLOWED_EXTENSIONS:
            raise HTTPException(400, f"Unsupported format. Use: {', '.join(sorted(ALLOWED_EXTENSIONS))}")

    if bpm <= 0:
        raise HTTPException(400, "bpm must be positive")
    if beats is not None and not 0 <= beats <= MAX_BEATS:
        raise HTTPException(400, f"beats must be between 0 and {MAX_BEATS}")
    if tolerance_ms is not None and tolerance_ms < 0:
        raise HTTPException(400, "tolerance_ms must be non-negative")

    content = await file.read()
    if len(content) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(400, f"File too large (max {settings.max_upload_mb} MB)")

    tmp_path = None
    try:
        # Write to temp file (librosa needs file path for some formats)
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
            tmp.write(content)
            tmp_path = tmp.name

        engine = ScoringEngine()
        result = engine.analyze_file(
            tmp_path,
            bpm=bpm,
            beat_count=beats,
            offset_ms=offset_ms,
            tolerance_ms=tolerance_ms,
        )
        return result_to_response(result)
    except RecordingTooShortError as e:
        raise HTTPException(400, str(e))
    except Exception:
        logger.exception("Scoring failed")
        raise HTTPException(500, "Analysis failed")
    finally:
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
