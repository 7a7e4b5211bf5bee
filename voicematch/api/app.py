"""
HTTP surface for the VoiceMatch analysis service.

FastAPI application exposing ``POST /api/v1/analyze-voice`` and a health
check. Every response uses the tagged envelope
``{"success": true, "data": ...}`` or ``{"success": false, "error": ...}``.
"""

import asyncio
import functools
import threading
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from voicematch import __version__
from voicematch.core.engine import VoiceAnalysisEngine, create_analysis_engine
from voicematch.utils.config import get_default_config
from voicematch.utils.errors import (
    ProcessingTimeout,
    SizeExceeded,
    VoiceMatchError,
    error_envelope,
    http_status_for,
)
from voicematch.utils.logging import create_logger_with_context, get_logger

API_PREFIX = "/api/v1"

logger = get_logger("api")


def _missing_fields(exc: RequestValidationError) -> str:
    names = []
    for err in exc.errors():
        loc = [str(part) for part in err.get('loc', ()) if part not in ('body', 'query', 'form')]
        if loc:
            names.append(loc[-1])
    if names:
        return f"Invalid or missing fields: {', '.join(sorted(set(names)))}"
    return "Invalid request parameters"


def create_app(
    config: Optional[Dict[str, Any]] = None,
    engine: Optional[VoiceAnalysisEngine] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Configuration dict (defaults when omitted)
        engine: Pre-built engine; created from config when omitted

    Returns:
        FastAPI: Application with routes and envelope error handlers
    """
    if config is None:
        config = get_default_config()
    if engine is None:
        engine = create_analysis_engine(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        engine.shutdown()

    app = FastAPI(
        title="VoiceMatch",
        description="Voice comparison analysis for pronunciation practice",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.config = config

    server_config = config.get('server', {})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_config.get('cors_origins', ["*"]),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handlers

    @app.exception_handler(VoiceMatchError)
    async def voicematch_error_handler(request: Request, exc: VoiceMatchError):
        log = getattr(request.state, 'logger', logger)
        if http_status_for(exc) >= 500:
            log.error(f"{exc.reason or exc.code}: {exc}")
        else:
            log.info(f"Rejected request: {exc.reason or exc.code}: {exc.message}")
        return JSONResponse(status_code=http_status_for(exc), content=error_envelope(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        message = _missing_fields(exc)
        getattr(request.state, 'logger', logger).info(f"Rejected request: {message}")
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": {"code": "INVALID_PARAMETERS", "message": message},
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        getattr(request.state, 'logger', logger).exception(f"Unhandled error: {exc}")
        return JSONResponse(status_code=500, content=error_envelope(exc))

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        request.state.logger = create_logger_with_context("api", {"request_id": request_id})
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # Routes

    @app.get(f"{API_PREFIX}/health")
    async def health():
        return {
            "success": True,
            "data": {
                "status": "ok",
                "version": __version__,
                "paramsVersion": engine.extractor.params_version,
            },
        }

    async def analyze_voice(
        request: Request,
        original_clip_id: str = Form(..., alias="originalClipId"),
        user_audio: UploadFile = File(..., alias="userAudio"),
        test_id: Optional[str] = Form(None),
        test_type: Optional[str] = Form(None),
    ):
        """
        Compare the uploaded recording against the reference clip.

        ``test_id`` and ``test_type`` are accepted for client compatibility
        and do not influence the analysis.
        """
        log = request.state.logger
        max_size = engine.decoder.max_file_size

        # Read at most one byte past the limit
        audio = await user_audio.read(max_size + 1)
        if len(audio) > max_size:
            raise SizeExceeded(
                f"File too large. Maximum: {max_size / 1024 / 1024:.1f} MB",
                size=len(audio),
                max_size=max_size
            )

        log.info(
            f"analyze-voice: clip={original_clip_id} file={user_audio.filename} "
            f"type={user_audio.content_type} bytes={len(audio)}"
        )

        cancel_event = threading.Event()
        loop = asyncio.get_running_loop()
        work = functools.partial(
            engine.analyze,
            original_clip_id,
            audio,
            user_audio.filename,
            user_audio.content_type,
            cancel_event,
        )
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(None, work), timeout=engine.timeout_seconds
            )
        except asyncio.TimeoutError:
            cancel_event.set()
            raise ProcessingTimeout(
                f"Analysis did not finish within {engine.timeout_seconds:.0f}s",
                timeout=engine.timeout_seconds,
            )
        except asyncio.CancelledError:
            # Client went away; stop the worker at its next boundary
            cancel_event.set()
            raise

        log.info(f"analyze-voice done: {result.get_summary()}")
        return {"success": True, "data": result.to_dict()}

    for path in (f"{API_PREFIX}/analyze-voice", f"{API_PREFIX}/analyze-voice/"):
        app.add_api_route(path, analyze_voice, methods=["POST"], include_in_schema=path.endswith("voice"))

    return app
