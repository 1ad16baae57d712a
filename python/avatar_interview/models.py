"""
Pydantic models for the Interview Session Orchestrator.

Defines avatars (provider "replicas"), interview rounds, session
descriptors, session request properties and the connection status model
consumed by presentation surfaces.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


MOCK_SESSION_PREFIX = "mock-"
MOCK_JOIN_URL_BASE = "https://tavus.io/conversations"


def utc_timestamp() -> str:
    """Return the current UTC time as ISO 8601 with a 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class OrchestratorState(str, Enum):
    """Lifecycle states of the session state machine."""

    IDLE = "idle"
    RESOLVING = "resolving"
    ACTIVE = "active"
    ENDING = "ending"
    FAILED = "failed"


class BackendKind(str, Enum):
    """Which session backend produced a session."""

    REMOTE = "remote"
    MOCK = "mock"


class ConnectionState(str, Enum):
    """Coarse connection status broadcast to subscribers."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    DISCONNECTED = "disconnected"


class ConnectionQuality(str, Enum):
    """Quality tier derived from the latency probe."""

    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"


class Avatar(BaseModel):
    """
    An AI interviewer persona served by the provider ("replica").

    Example:
        >>> avatar = Avatar(replica_id="r79e1c033f", replica_name="Anna", status="ready")
        >>> avatar.is_ready
        True
    """
    replica_id: str = Field(..., min_length=1, description="Provider replica identifier")
    replica_name: str = Field(default="AI Interviewer", description="Display name")
    status: str = Field(default="unknown", description="Readiness status reported by the provider")
    thumbnail_url: Optional[str] = Field(default=None, description="Preview image")
    video_url: Optional[str] = Field(default=None, description="Preview video")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = {"extra": "ignore"}

    @property
    def is_ready(self) -> bool:
        return self.status.strip().lower() == "ready"


class InterviewRound(BaseModel):
    """One configured phase of a multi-round interview."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    replica_id: str = Field(..., min_length=1, description="Avatar bound to this round")
    persona_id: Optional[str] = Field(default=None, description="Persona used when creating sessions")
    duration_minutes: int = Field(..., gt=0)
    icon: str = "User"

    model_config = {"frozen": True}


class SessionProperties(BaseModel):
    """
    Properties requested when creating a provider session.

    Defaults mirror the interview product's standard call settings.
    """
    max_call_duration: int = Field(default=3600, gt=0, description="Seconds")
    participant_left_timeout: int = Field(default=30, ge=0, description="Seconds")
    participant_absent_timeout: int = Field(default=60, ge=0, description="Seconds")
    enable_recording: bool = True
    enable_transcription: bool = True
    language: str = "English"
    apply_greenscreen: Optional[bool] = None


class SessionRequest(BaseModel):
    """Body of a create-session request."""

    replica_id: str = Field(..., min_length=1)
    persona_id: Optional[str] = None
    conversation_name: str = Field(..., min_length=1)
    callback_url: Optional[str] = None
    properties: SessionProperties = Field(default_factory=SessionProperties)

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the provider API, omitting unset optional fields."""
        return self.model_dump(exclude_none=True)


class InterviewSession(BaseModel):
    """
    Descriptor of one active (remote or simulated) interview session.

    Example:
        >>> session = InterviewSession(
        ...     session_id="c123456",
        ...     join_url="https://tavus.daily.co/c123456",
        ...     status="active",
        ...     round_id="technical",
        ... )
    """
    session_id: str = Field(..., min_length=1, description="Provider conversation id")
    join_url: str = Field(..., min_length=1, description="URL loaded by the embedded frame")
    status: str = Field(default="active", description="Lifecycle status")
    created_at: str = Field(default_factory=utc_timestamp)
    round_id: Optional[str] = Field(default=None, description="Owning round identifier")
    ended_at: Optional[str] = None

    @property
    def is_mock(self) -> bool:
        return is_mock_session_id(self.session_id)

    @classmethod
    def from_provider(cls, payload: dict[str, Any], round_id: Optional[str] = None) -> "InterviewSession":
        """Build a descriptor from a provider conversation response."""
        return cls(
            session_id=payload.get("conversation_id") or payload.get("session_id") or "",
            join_url=payload.get("conversation_url") or payload.get("join_url") or "",
            status=payload.get("status") or "active",
            created_at=payload.get("created_at") or utc_timestamp(),
            round_id=round_id,
        )


class ConnectionStatus(BaseModel):
    """Connection status and quality snapshot broadcast to subscribers."""

    status: ConnectionState = ConnectionState.DISCONNECTED
    quality: ConnectionQuality = ConnectionQuality.GOOD
    camera: bool = False
    microphone: bool = False
    latency_ms: Optional[float] = Field(default=None, ge=0.0)
    error: Optional[str] = None

    model_config = {"frozen": True}


class RoundArtifacts(BaseModel):
    """Recording and transcript fetched for an ended session."""

    session_id: str
    round_id: Optional[str] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None


def is_mock_session_id(session_id: Optional[str]) -> bool:
    """Return True if the id carries the synthetic mock prefix."""
    return bool(session_id) and session_id.startswith(MOCK_SESSION_PREFIX)


def is_mock_join_url(join_url: Optional[str]) -> bool:
    """Return True if the presentation layer should render a simulated interviewer."""
    if not join_url:
        return False
    return join_url.rstrip("/").rsplit("/", 1)[-1].startswith(MOCK_SESSION_PREFIX)
