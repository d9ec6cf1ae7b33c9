from __future__ import annotations

"""
API surface for the session transcription pipeline.

Design intent:
- Keep API orchestration thin: live capture, batch upload and video upload
  all delegate to the transcription modules.
- One live transcription session per WebSocket connection, disposed when the
  connection stops or drops.
- Map pipeline errors to explicit HTTP statuses for the upload path.
"""

import asyncio
import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from backend.asr.live_session import Listener, LiveTranscriptionSession
from backend.internal_core import load_config
from backend.internal_core.asr import SpeechTranscriber, build_backend
from backend.internal_core.audio_utils import AudioNormalizer
from backend.internal_core.config import TranscriptionConfig
from backend.internal_core.contracts import Segment
from backend.internal_core.errors import (
    RecognitionFailed,
    TranscodeFailed,
    UnsupportedFormat,
)
from backend.internal_core.temp_files import TempFileScope
from backend.internal_core.transcode import FFmpegAudioTrackExtractor

_CONFIG = load_config()
logging.basicConfig(
    level=getattr(logging, _CONFIG.SCRIBE_LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


class TranscriptionResponse(BaseModel):
    session_id: str
    source: Literal["audio", "video"]
    transcript: str
    segments: list[Segment] = Field(default_factory=list)
    debug: dict[str, Any] = Field(default_factory=dict)


class LiveSessionsResponse(BaseModel):
    active_sessions: list[dict[str, Any]] = Field(default_factory=list)


app = FastAPI(title="session transcription service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_config() -> TranscriptionConfig:
    existing = getattr(app.state, "config", None)
    if isinstance(existing, TranscriptionConfig):
        return existing
    setattr(app.state, "config", _CONFIG)
    return _CONFIG


def _get_transcriber() -> SpeechTranscriber:
    existing = getattr(app.state, "transcriber", None)
    if isinstance(existing, SpeechTranscriber):
        return existing
    cfg = _get_config()
    created = SpeechTranscriber(
        build_backend(cfg),
        AudioNormalizer(FFmpegAudioTrackExtractor(cfg.FFMPEG_PATH)),
        tmp_dir=cfg.tmp_dir_path(),
    )
    setattr(app.state, "transcriber", created)
    return created


def _get_live_session_store() -> dict[str, LiveTranscriptionSession]:
    existing = getattr(app.state, "live_transcription_sessions", None)
    if isinstance(existing, dict):
        return existing
    created: dict[str, LiveTranscriptionSession] = {}
    setattr(app.state, "live_transcription_sessions", created)
    return created


def _sanitize_filename(filename: str) -> tuple[str, str]:
    name = Path(str(filename or "")).name
    return Path(name).stem or "upload", Path(name).suffix.lower()


def _websocket_listener(websocket: WebSocket, session_id: str) -> Listener:
    async def _send(event: str, payload: dict[str, Any]) -> None:
        try:
            await websocket.send_json({"type": event, "session_id": session_id, **payload})
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("Dropped %s event for session %s: %s", event, session_id, exc)

    return _send


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/transcription/live/sessions", response_model=LiveSessionsResponse)
async def live_sessions() -> LiveSessionsResponse:
    store = _get_live_session_store()
    return LiveSessionsResponse(
        active_sessions=[
            {
                "connection_id": connection_id,
                "session_id": session.session_id,
                "state": session.state.value,
                "bytes_received": session.bytes_received,
            }
            for connection_id, session in store.items()
        ]
    )


@app.post("/sessions/{session_id}/transcriptions", response_model=TranscriptionResponse)
async def create_transcription(
    session_id: str,
    request: Request,
    filename: str = Query(min_length=1, max_length=255),
    source: Literal["audio", "video"] = Query(default="audio"),
) -> TranscriptionResponse:
    stem, suffix = _sanitize_filename(filename)
    if not suffix:
        raise HTTPException(status_code=400, detail="Filename must have an extension.")

    payload = await request.body()
    if not payload:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")

    cfg = _get_config()
    if len(payload) > cfg.SCRIBE_MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"Uploaded file exceeds {cfg.SCRIBE_MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit.",
        )

    content_type = str(request.headers.get("content-type", ""))
    transcriber = _get_transcriber()
    try:
        with TempFileScope(cfg.tmp_dir_path(), prefix=f"scribe-upload-{stem}") as scope:
            upload_path = scope.new_path(suffix)
            upload_path.write_bytes(payload)
            if source == "video":
                result = await transcriber.transcribe_video(upload_path, content_type)
            else:
                result = await transcriber.transcribe_batch(upload_path, content_type)
    except UnsupportedFormat as exc:
        raise HTTPException(status_code=415, detail=str(exc)) from exc
    except TranscodeFailed as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except RecognitionFailed as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return TranscriptionResponse(
        session_id=session_id,
        source=source,
        transcript=result.transcript,
        segments=list(result.segments),
        debug={
            "content_type": content_type,
            "size_bytes": len(payload),
            "provider": transcriber.backend.name(),
        },
    )


async def _finish_on_disconnect(connection_id: str) -> None:
    session = _get_live_session_store().pop(connection_id, None)
    if session is None:
        return
    try:
        result = await session.complete()
        logger.info(
            "Live session %s completed on disconnect: %d segments",
            session.session_id,
            len(result.segments),
        )
    except Exception:
        logger.exception("Could not complete live session %s on disconnect", session.session_id)
    finally:
        await session.dispose()


@app.websocket("/ws/transcription/live")
async def live_transcription_ws(websocket: WebSocket) -> None:
    await websocket.accept()
    connection_id = uuid4().hex
    connection_closed = asyncio.Event()
    store = _get_live_session_store()

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                payload = None
            if not isinstance(payload, dict):
                await websocket.send_json({"type": "error", "detail": "invalid_json"})
                continue

            message_type = str(payload.get("type", "")).strip().lower()
            session_id = str(payload.get("session_id", "")).strip()

            if message_type == "start":
                if not session_id:
                    await websocket.send_json({"type": "error", "detail": "session_id is required."})
                    continue
                existing = store.pop(connection_id, None)
                if existing is not None:
                    await existing.dispose()
                cfg = _get_config()
                session = LiveTranscriptionSession(
                    session_id,
                    _get_transcriber(),
                    _websocket_listener(websocket, session_id),
                    tmp_dir=cfg.tmp_dir_path(),
                    update_interval_sec=cfg.SCRIBE_LIVE_UPDATE_INTERVAL_SEC,
                )
                store[connection_id] = session
                await session.start()
                continue

            session = store.get(connection_id)
            if session is None or session.session_id != session_id:
                await websocket.send_json({"type": "error", "detail": "live_session_not_started"})
                continue

            if message_type == "audio_chunk":
                try:
                    chunk = base64.b64decode(str(payload.get("data_b64", "")), validate=True)
                except (binascii.Error, ValueError):
                    await websocket.send_json({"type": "error", "detail": "invalid_base64"})
                    continue
                await session.append_audio(chunk, connection_closed)
                continue

            if message_type == "stop":
                store.pop(connection_id, None)
                try:
                    result = await session.complete(connection_closed)
                except Exception as exc:
                    logger.exception("Final transcription failed for session %s", session_id)
                    await websocket.send_json(
                        {"type": "status", "session_id": session_id, "status": "error", "message": str(exc)}
                    )
                    continue
                finally:
                    await session.dispose()
                await websocket.send_json({"type": "result", "session_id": session_id, **result.update_payload()})
                await websocket.send_json({"type": "status", "session_id": session_id, "status": "stopped"})
                continue

            await websocket.send_json({"type": "error", "detail": "unknown_message_type"})
    except WebSocketDisconnect:
        logger.debug("Live transcription connection %s closed", connection_id)
    finally:
        connection_closed.set()
        await _finish_on_disconnect(connection_id)
