import logging
import time
from typing import Callable, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from meetingvault.services.audio_capture import list_input_devices
from meetingvault.services.recording_manager import RecordingManager, RecordingStateError


class StartRecordingRequest(BaseModel):
    device: Optional[str] = Field(
        None, description="Input device index or name from /api/audio/devices (default: config.inputDevice)"
    )


def create_recording_router(
    manager: RecordingManager,
    list_devices: Callable[[], list[dict]] = list_input_devices,
) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("meetingvault.api.recording")

    @router.get("/api/audio/devices")
    def devices() -> list[dict]:
        try:
            return list_devices()
        except RuntimeError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @router.get("/api/recording/status")
    def recording_status() -> dict:
        return manager.status()

    @router.post("/api/recording/start")
    def start_recording(payload: Optional[StartRecordingRequest] = None) -> dict:
        start_time = time.perf_counter()
        device = payload.device if payload else None
        logger.debug("start_recording received: device=%s", device)
        try:
            result = manager.start(device=device)
        except RecordingStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except (RuntimeError, OSError) as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("start_recording failed in %.2f ms: %s", duration_ms, exc)
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception("start_recording error in %.2f ms: %s", duration_ms, exc)
            raise HTTPException(status_code=500, detail="Internal Server Error") from exc
        logger.info("start_recording completed in %.2f ms", (time.perf_counter() - start_time) * 1000)
        return result

    @router.post("/api/recording/stop")
    def stop_recording() -> dict:
        start_time = time.perf_counter()
        try:
            result = manager.stop()
        except RecordingStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception("stop_recording error in %.2f ms: %s", duration_ms, exc)
            raise HTTPException(status_code=500, detail="Internal Server Error") from exc
        logger.info("stop_recording completed in %.2f ms", (time.perf_counter() - start_time) * 1000)
        return result

    return router
