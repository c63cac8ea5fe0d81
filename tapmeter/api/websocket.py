"""WebSocket endpoint for live tap detection and scoring."""

import json
import logging

import numpy as np
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from tapmeter.analysis.models import DrumType
from tapmeter.analysis.session import TapSession
from tapmeter.api.schemas import (
    CalibrationMessage,
    StatsMessage,
    TapMessage,
    beat_to_response,
    stats_to_response,
    tap_to_response,
)
from tapmeter.audio.frames import FrameSource
from tapmeter.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


def stats_message(session: TapSession) -> dict:
    return StatsMessage(
        stats=stats_to_response(session.timing_stats()),
        beats=[beat_to_response(b) for b in session.analysis()],
    ).model_dump()


def handle_control(session: TapSession, source: FrameSource, payload: dict) -> list[dict]:
    """Apply one control message; return the messages to send back.

    Raises ValueError (or KeyError/TypeError) on malformed controls.
    """
    if not isinstance(payload, dict):
        raise TypeError("control message must be a JSON object")
    kind = payload.get("type")

    if kind == "expected_beats":
        session.set_expected_beats(float(b) for b in payload["beats"])
        return []
    if kind == "metronome":
        start_ms = float(payload.get("start_ms", source.position_ms))
        count = int(payload.get("count", settings.default_beat_count))
        session.start_metronome(float(payload["bpm"]), start_ms, count)
        return []
    if kind == "calibrate":
        session.detector.start_calibration(
            float(payload.get("duration_ms", settings.calibration_duration_ms))
        )
        return []
    if kind == "cancel_calibration":
        session.detector.cancel_calibration()
        return []
    if kind == "sensitivity":
        session.detector.adjust_sensitivity(float(payload["factor"]))
        return []
    if kind == "tolerance":
        session.tracker.set_tolerance(float(payload["ms"]))
        return []
    if kind == "manual_tap":
        tap = session.add_manual_tap(
            float(payload.get("timestamp", source.position_ms)),
            DrumType(payload.get("drum_type", DrumType.SNARE.value)),
        )
        return [TapMessage(tap=tap_to_response(tap)).model_dump()]
    if kind == "clear":
        session.clear()
        return []
    if kind == "stats":
        return [stats_message(session)]
    raise ValueError(f"Unknown control message: {kind!r}")


@router.websocket("/ws/live")
async def live_taps(websocket: WebSocket):
    """Live tap detection via WebSocket.

    Protocol:
    - Client sends binary Float32 PCM chunks (settings.sample_rate, mono)
    - Client sends JSON controls, e.g.
      {"type": "metronome", "bpm": 90, "count": 32},
      {"type": "expected_beats", "beats": [...]},
      {"type": "calibrate", "duration_ms": 3000}, {"type": "stats"}
    - Server sends JSON messages:
      - {"type": "tap", "tap": {...}}
      - {"type": "stats", "stats": {...}, "beats": [...]} after each tap
        once a beat grid is armed, and on request
      - {"type": "calibration_complete", "threshold": T}
      - {"type": "error", "message": "..."}
    Timestamps are ms of stream audio since the first chunk.
    """
    await websocket.accept()

    session = TapSession.from_settings()
    source = FrameSource(
        sr=settings.sample_rate,
        fft_size=settings.fft_size,
        hop_length=settings.hop_length,
        smoothing=settings.smoothing_time_constant,
        min_db=settings.min_db,
        max_db=settings.max_db,
    )
    outbox: list[dict] = []
    session.detector.on_tap(
        lambda tap: outbox.append(TapMessage(tap=tap_to_response(tap)).model_dump())
    )
    session.detector.on_calibration_complete(
        lambda threshold: outbox.append(CalibrationMessage(threshold=threshold).model_dump())
    )
    logger.info("Live session started")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            data = message.get("bytes")
            text = message.get("text")
            if data:
                n_samples = len(data) // 4
                if n_samples == 0:
                    continue
                chunk = np.frombuffer(data[:n_samples * 4], dtype=np.float32)
                tapped = session.process_frames(source.push(chunk))
                if tapped and session.tracker.expected_beats:
                    outbox.append(stats_message(session))
            elif text:
                try:
                    outbox.extend(handle_control(session, source, json.loads(text)))
                except (ValueError, KeyError, TypeError) as e:
                    outbox.append({"type": "error", "message": f"Invalid control message: {e}"})

            while outbox:
                await websocket.send_json(outbox.pop(0))

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.exception("Live session failed")
        try:
            await websocket.send_json({"type": "error", "message": str(e)})
        except Exception:
            pass
    finally:
        logger.info(f"Live session ended ({len(session.history)} recent taps)")
