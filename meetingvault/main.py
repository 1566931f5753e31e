import logging
import os
from typing import Callable, Mapping, Optional

from fastapi import FastAPI

from meetingvault import __version__
from meetingvault.config import load_config
from meetingvault.context import AppContext
from meetingvault.routers.recording import create_recording_router
from meetingvault.routers.sessions import create_sessions_router
from meetingvault.services.audio_capture import StreamFactory, list_input_devices
from meetingvault.services.crash_logging import enable_crash_logging
from meetingvault.services.logging_setup import configure_logging
from meetingvault.services.pipeline import MeetingPipeline
from meetingvault.services.recording_manager import RecordingManager


def create_app(
    *,
    cwd: Optional[str] = None,
    data_dir: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    stream_factory: Optional[StreamFactory] = None,
    pipeline_factory: Optional[Callable[[], MeetingPipeline]] = None,
    list_devices: Callable[[], list[dict]] = list_input_devices,
) -> FastAPI:
    env = os.environ if environ is None else environ
    cwd = cwd or os.getcwd()
    data_dir = data_dir or env.get("MEETINGVAULT_DATA_DIR") or os.path.join(cwd, "data")
    ctx = AppContext(cwd=cwd, data_dir=data_dir, config_path=os.path.join(data_dir, "config.json"))
    ctx.ensure_dirs()

    log_path = configure_logging(ctx.logs_dir)
    logger = logging.getLogger("meetingvault.boot")
    logger.info("Boot: starting create_app cwd=%s data_dir=%s log=%s", cwd, ctx.data_dir, log_path)
    enable_crash_logging(ctx.logs_dir)

    config = load_config(ctx.config_path, env)
    logger.info(
        "Boot: config whisper_model=%s gemini_model=%s export_to_notion=%s segment_seconds=%s",
        bool((config.whisper_model_path or "").strip()),
        config.resolved_gemini_model(),
        config.export_to_notion,
        config.segment_seconds,
    )

    app = FastAPI(title="MeetingVault", version=__version__)
    app.state.ctx = ctx
    app.state.config = config

    manager = RecordingManager(ctx, config, stream_factory=stream_factory)
    app.state.recording_manager = manager

    if pipeline_factory is None:
        def pipeline_factory() -> MeetingPipeline:
            return MeetingPipeline(app.state.config)

    app.include_router(create_recording_router(manager, list_devices=list_devices))
    logger.info("Boot: recording router mounted")
    app.include_router(create_sessions_router(ctx, manager, pipeline_factory))
    logger.info("Boot: sessions router mounted")

    @app.get("/api/health")
    def health() -> dict:
        return {
            "status": "ok",
            "version": __version__,
            "recording": manager.is_recording(),
        }

    logger.info("Boot: create_app complete")
    return app
