"""
Avatar Interview Host Service

Hosts one InterviewOrchestrator and exposes it to presentation surfaces
(video tile, control bar, browser frame bridge) over HTTP.

Endpoints:
    GET  /health                          - Health check
    GET  /stats                           - Statistics
    GET  /rounds                          - Configured rounds and progress
    POST /rounds/start                    - Start a round (or the interview-type round)
    POST /rounds/end                      - End the active round
    POST /rounds/advance                  - End the active round, schedule the next
    GET  /session/status                  - Orchestrator and connection status
    POST /connection/probe                - Run the latency probe against HOST_ORIGIN
    POST /connection/devices              - Report the browser's device check outcome
    POST /frame/message                   - Relay an inbound message from the frame
    POST /frame/toggle                    - Toggle camera / microphone / interviewer audio
    GET  /frame/outbox                    - Drain messages queued for the frame
    POST /api/tavus/callback              - Provider conversation callbacks
    GET  /sessions/{session_id}/artifacts - Recording URL and transcript of an ended round

Internal binding: configured by HOST_BIND/HOST_PORT (default 0.0.0.0:8770)
"""

from __future__ import annotations

import logging
from collections import deque
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Any, AsyncIterator, Literal, Optional, TypedDict

import aiofiles
import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from avatar_interview import (
    ConnectionState,
    InterviewConfig,
    InterviewOrchestrator,
    InterviewSessionError,
    InterviewValidationError,
    InvalidOperationError,
    NoActiveRoundError,
    NoInterviewerAvailableError,
    ProviderError,
    ProviderNotConfiguredError,
    RoundAlreadyCompletedError,
    load_interview_config,
)
from avatar_interview.health import (
    DEVICE_ERROR_MESSAGES,
    DeviceErrorKind,
    DevicePermissions,
    HttpLatencyProbe,
    LatencyProbe,
)
from avatar_interview.models import utc_timestamp

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


SERVICE_NAME = "Avatar Interview Host"
SERVICE_VERSION = "0.1.0"
FRAME_OUTBOX_LIMIT = 100

# CORS configuration - modify for production
CORS_ORIGINS: list[str] = [
    "http://localhost:5173",  # Vite dev server
    "http://localhost:3000",
]

ERROR_STATUS_CODES: dict[type[InterviewSessionError], int] = {
    InterviewValidationError: status.HTTP_422_UNPROCESSABLE_CONTENT,
    NoInterviewerAvailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    RoundAlreadyCompletedError: status.HTTP_409_CONFLICT,
    NoActiveRoundError: status.HTTP_409_CONFLICT,
    ProviderError: status.HTTP_502_BAD_GATEWAY,
    ProviderNotConfiguredError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


# =============================================================================
# Request / Response Models
# =============================================================================


class RoundStartRequest(BaseModel):
    """Request to start a round."""

    round_id: Optional[str] = Field(
        default=None,
        description="Round to start. Omit to resolve from the configured interview type.",
    )
    candidate_name: Optional[str] = Field(default=None, min_length=1)
    role: Optional[str] = Field(default=None, min_length=1)


class FrameMessageRequest(BaseModel):
    """Inbound frame message relayed by the browser bridge."""

    origin: Optional[str] = Field(default=None, description="event.origin seen by the browser")
    data: Any = Field(default=None, description="event.data posted by the frame")


class FrameToggleRequest(BaseModel):
    """Local media toggle intent."""

    control: Literal["video", "audio", "mute"]
    value: Optional[bool] = Field(default=None, description="New state. Omit to flip.")


class DeviceReportRequest(BaseModel):
    """Outcome of the browser-side camera/microphone check."""

    camera: bool
    microphone: bool
    error_kind: Optional[DeviceErrorKind] = None


class ProviderCallbackRequest(BaseModel):
    """Conversation callback posted by the provider."""

    conversation_id: Optional[str] = None
    event_type: Optional[str] = None
    message_type: Optional[str] = None
    properties: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}


class BaseResponse(BaseModel):
    """Base response model with success indicator."""

    ok: bool = True
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response model."""

    ok: bool = False
    error: str
    error_code: Optional[str] = None


class StatusResponse(BaseResponse):
    """Orchestrator snapshot."""

    status: dict[str, Any]


class RoundsResponse(BaseResponse):
    rounds: list[dict[str, Any]]
    completed_rounds: list[str]
    current_round_id: Optional[str] = None
    is_complete: bool = False


class AdvanceResponse(BaseResponse):
    next_round_id: Optional[str] = None
    interview_complete: bool = False


class ProbeResponse(BaseResponse):
    quality: str
    latency_ms: Optional[float] = None


class DeviceResponse(BaseResponse):
    camera: bool
    microphone: bool
    error: Optional[str] = None


class FrameMessageResponse(BaseResponse):
    accepted: bool


class FrameToggleResponse(BaseResponse):
    control: str
    value: bool


class OutboxResponse(BaseResponse):
    messages: list[dict[str, Any]]


class ArtifactsResponse(BaseResponse):
    session_id: str
    round_id: Optional[str] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None
    transcript_file: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    timestamp: str
    backend: str
    fallback_active: bool
    session_active: bool


class StatsResponse(BaseModel):
    """Statistics response."""

    stats: dict[str, Any] = Field(..., description="Service statistics")
    frame_outbox_size: int = Field(..., description="Frame messages awaiting the browser bridge")
    subscriber_count: int = Field(..., description="Connection status subscribers")
    artifact_directory: str = Field(..., description="Transcript output directory path")


class AppStats(TypedDict):
    """Service statistics."""

    rounds_started: int
    rounds_ended: int
    frame_messages_accepted: int
    frame_messages_rejected: int
    provider_callbacks: int
    started_at: str


class AppState(TypedDict):
    """Type-safe application state managed by lifespan."""

    config: InterviewConfig
    orchestrator: InterviewOrchestrator
    frame_outbox: deque[dict[str, Any]]
    latency_probe: Optional[LatencyProbe]
    stats: AppStats


def get_initial_stats() -> AppStats:
    return AppStats(
        rounds_started=0,
        rounds_ended=0,
        frame_messages_accepted=0,
        frame_messages_rejected=0,
        provider_callbacks=0,
        started_at=utc_timestamp(),
    )


# =============================================================================
# Dependencies
# =============================================================================


def get_app_state(request: Request) -> AppState:
    """
    Dependency to retrieve application state from request.

    Raises:
        RuntimeError: If state is not properly initialized.
    """
    state = getattr(request, "state", None)
    if state is None:
        raise RuntimeError("Application state not initialized")
    return AppState(
        config=state.config,
        orchestrator=state.orchestrator,
        frame_outbox=state.frame_outbox,
        latency_probe=state.latency_probe,
        stats=state.stats,
    )


AppStateDep = Annotated[AppState, Depends(get_app_state)]


# =============================================================================
# File Operations (Async)
# =============================================================================


async def save_transcript_to_file(artifact_dir: Path, session_id: str, transcript: str) -> Optional[Path]:
    """
    Write a round transcript under artifact_dir.

    Returns:
        The written path, or None if writing failed.
    """
    path = artifact_dir / f"{session_id}_transcript.txt"
    try:
        artifact_dir.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(transcript)
    except OSError as e:
        logger.error("Failed to save transcript to file: %s", e)
        return None
    logger.info("Saved transcript: %s", path)
    return path


# =============================================================================
# Exception Handlers
# =============================================================================


async def interview_error_handler(request: Request, exc: InterviewSessionError) -> JSONResponse:
    """Map domain errors to JSON error responses."""
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=exc.message, error_code=exc.error_code).model_dump(),
    )


async def invalid_operation_handler(request: Request, exc: InvalidOperationError) -> JSONResponse:
    """Overlapping round operations or use after teardown."""
    logger.warning("Rejected operation: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=ErrorResponse(error=str(exc), error_code=exc.error_code).model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="Internal server error", error_code="INTERNAL_ERROR").model_dump(),
    )


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    config: Optional[InterviewConfig] = None,
    *,
    provider_transport: Optional[httpx.AsyncBaseTransport] = None,
    latency_probe: Optional[LatencyProbe] = None,
) -> FastAPI:
    """
    Build the host application.

    Args:
        config: Resolved configuration. Loaded from the environment at
            startup when omitted.
        provider_transport: Optional httpx transport for the provider client.
        latency_probe: Optional probe override. Defaults to a HEAD request
            to HOST_ORIGIN when configured.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[dict[str, Any]]:
        resolved = config or load_interview_config()
        logger.info("Starting %s v%s", SERVICE_NAME, SERVICE_VERSION)

        orchestrator = InterviewOrchestrator.from_config(resolved, transport=provider_transport)
        frame_outbox: deque[dict[str, Any]] = deque(maxlen=FRAME_OUTBOX_LIMIT)
        if orchestrator.frame is not None:
            orchestrator.frame.attach(frame_outbox.append)

        probe = latency_probe
        if probe is None and resolved.host_origin:
            probe = HttpLatencyProbe(resolved.host_origin)

        logger.info(
            "Backend: %s, rounds: %s, artifacts: %s",
            orchestrator.backend_kind.value,
            [r.id for r in orchestrator.catalog.list_rounds()],
            resolved.artifact_dir,
        )

        yield {
            "config": resolved,
            "orchestrator": orchestrator,
            "frame_outbox": frame_outbox,
            "latency_probe": probe,
            "stats": get_initial_stats(),
        }

        logger.info("Shutting down...")
        await orchestrator.teardown()

    app = FastAPI(
        title=SERVICE_NAME,
        version=SERVICE_VERSION,
        description="Sequences AI video interview rounds against a video-avatar provider",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
        max_age=3600,
    )

    app.add_exception_handler(InterviewSessionError, interview_error_handler)
    app.add_exception_handler(InvalidOperationError, invalid_operation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    @app.get("/health", response_model=HealthResponse)
    async def health(state: AppStateDep) -> HealthResponse:
        orchestrator = state["orchestrator"]
        return HealthResponse(
            status="healthy",
            service=SERVICE_NAME,
            version=SERVICE_VERSION,
            timestamp=utc_timestamp(),
            backend=orchestrator.backend_kind.value,
            fallback_active=orchestrator.is_fallback_active,
            session_active=orchestrator.session is not None,
        )

    @app.get("/stats", response_model=StatsResponse)
    async def get_stats(state: AppStateDep) -> StatsResponse:
        return StatsResponse(
            stats=dict(state["stats"]),
            frame_outbox_size=len(state["frame_outbox"]),
            subscriber_count=state["orchestrator"].monitor.subscriber_count,
            artifact_directory=str(state["config"].artifact_dir),
        )

    @app.get("/rounds", response_model=RoundsResponse)
    async def list_rounds(state: AppStateDep) -> RoundsResponse:
        orchestrator = state["orchestrator"]
        current = orchestrator.current_round
        return RoundsResponse(
            rounds=[r.model_dump() for r in orchestrator.catalog.list_rounds()],
            completed_rounds=list(orchestrator.completed_rounds),
            current_round_id=current.id if current else None,
            is_complete=orchestrator.is_complete,
        )

    @app.post("/rounds/start", response_model=StatusResponse)
    async def start_round(request: RoundStartRequest, state: AppStateDep) -> StatusResponse:
        orchestrator = state["orchestrator"]
        if request.candidate_name:
            orchestrator.candidate_name = request.candidate_name
        if request.role:
            orchestrator.role = request.role

        session = await orchestrator.start_round(request.round_id)
        state["stats"]["rounds_started"] += 1
        return StatusResponse(
            message=f"Round {session.round_id} active",
            status=orchestrator.snapshot(),
        )

    @app.post("/rounds/end", response_model=StatusResponse)
    async def end_round(state: AppStateDep) -> StatusResponse:
        orchestrator = state["orchestrator"]
        ended = await orchestrator.end_round()
        if ended is not None:
            state["stats"]["rounds_ended"] += 1
        return StatusResponse(
            message="Round ended" if ended else "No active round",
            status=orchestrator.snapshot(),
        )

    @app.post("/rounds/advance", response_model=AdvanceResponse)
    async def advance_round(state: AppStateDep) -> AdvanceResponse:
        orchestrator = state["orchestrator"]
        next_round = await orchestrator.advance_to_next_round()
        state["stats"]["rounds_ended"] += 1
        if next_round is None:
            return AdvanceResponse(message="Interview complete", interview_complete=True)
        return AdvanceResponse(
            message=f"Round {next_round.id} starting",
            next_round_id=next_round.id,
        )

    @app.get("/session/status", response_model=StatusResponse)
    async def session_status(state: AppStateDep) -> StatusResponse:
        return StatusResponse(status=state["orchestrator"].snapshot())

    @app.post("/connection/probe", response_model=ProbeResponse)
    async def probe_connection(state: AppStateDep) -> ProbeResponse:
        probe = state["latency_probe"]
        if probe is None:
            raise InterviewValidationError("HOST_ORIGIN is not configured; cannot probe latency.")
        monitor = state["orchestrator"].monitor
        quality = await monitor.probe_quality(probe)
        return ProbeResponse(quality=quality.value, latency_ms=monitor.status.latency_ms)

    @app.post("/connection/devices", response_model=DeviceResponse)
    async def report_devices(request: DeviceReportRequest, state: AppStateDep) -> DeviceResponse:
        error = DEVICE_ERROR_MESSAGES[request.error_kind] if request.error_kind else None
        permissions = DevicePermissions(
            camera=request.camera,
            microphone=request.microphone,
            error=error,
            error_kind=request.error_kind,
        )
        state["orchestrator"].monitor.apply_device_permissions(permissions)
        return DeviceResponse(
            ok=error is None,
            camera=permissions.camera,
            microphone=permissions.microphone,
            error=error,
        )

    @app.post("/frame/message", response_model=FrameMessageResponse)
    async def frame_message(request: FrameMessageRequest, state: AppStateDep) -> FrameMessageResponse:
        accepted = await state["orchestrator"].handle_frame_message(request.data, request.origin)
        key = "frame_messages_accepted" if accepted else "frame_messages_rejected"
        state["stats"][key] += 1
        return FrameMessageResponse(accepted=accepted)

    @app.post("/frame/toggle", response_model=FrameToggleResponse)
    async def frame_toggle(request: FrameToggleRequest, state: AppStateDep) -> FrameToggleResponse:
        frame = state["orchestrator"].frame
        if frame is None:
            raise InterviewValidationError("No interview frame channel configured.")
        if request.control == "video":
            value = frame.toggle_video(request.value)
        elif request.control == "audio":
            value = frame.toggle_audio(request.value)
        else:
            value = frame.toggle_mute(request.value)
        return FrameToggleResponse(control=request.control, value=value)

    @app.get("/frame/outbox", response_model=OutboxResponse)
    async def frame_outbox(state: AppStateDep) -> OutboxResponse:
        outbox = state["frame_outbox"]
        messages = list(outbox)
        outbox.clear()
        return OutboxResponse(messages=messages)

    @app.post("/api/tavus/callback", response_model=BaseResponse)
    async def provider_callback(request: ProviderCallbackRequest, state: AppStateDep) -> BaseResponse:
        orchestrator = state["orchestrator"]
        state["stats"]["provider_callbacks"] += 1
        session = orchestrator.session
        logger.info(
            "Provider callback: event=%s conversation=%s",
            request.event_type,
            request.conversation_id,
        )

        if session is None or request.conversation_id != session.session_id:
            return BaseResponse(ok=True, message="Callback ignored: not the active session")

        if request.event_type == "system.replica_joined":
            orchestrator.monitor.update(status=ConnectionState.CONNECTED)
        elif request.event_type == "system.shutdown":
            await orchestrator.end_round()
        return BaseResponse(message=f"Callback {request.event_type} processed")

    @app.get("/sessions/{session_id}/artifacts", response_model=ArtifactsResponse)
    async def session_artifacts(session_id: str, state: AppStateDep) -> ArtifactsResponse:
        artifacts = await state["orchestrator"].fetch_round_artifacts(session_id)
        transcript_file: Optional[Path] = None
        if artifacts.transcript:
            transcript_file = await save_transcript_to_file(
                state["config"].artifact_dir,
                artifacts.session_id,
                artifacts.transcript,
            )
        return ArtifactsResponse(
            **artifacts.model_dump(),
            transcript_file=str(transcript_file) if transcript_file else None,
        )


app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    runtime_config = load_interview_config()
    logger.info("=" * 60)
    logger.info("%s v%s", SERVICE_NAME, SERVICE_VERSION)
    logger.info("=" * 60)
    logger.info("Binding to: http://%s:%d", runtime_config.host_bind, runtime_config.host_port)
    logger.info("Provider key configured: %s", runtime_config.has_api_key)
    logger.info("=" * 60)

    uvicorn.run(
        create_app(runtime_config),
        host=runtime_config.host_bind,
        port=runtime_config.host_port,
        log_level="info",
    )
