"""
Avatar Interview Session Package.

Orchestrates multi-round AI video interviews against a video-avatar
provider, with a mock fallback when the provider is unavailable.

Components:
    - AvatarProviderClient: Async HTTP client for the provider API
    - RoundCatalog: Ordered rounds and their bound avatars
    - SessionBackend: Remote and mock session backends
    - InterviewOrchestrator: Session state machine and round sequencing
    - ConnectionHealthMonitor: Connection status / quality broadcaster
    - FrameControlChannel: Messaging with the embedded interview frame
    - Models: Pydantic models for avatars, rounds, sessions and status

Example:
    >>> from avatar_interview import InterviewOrchestrator, load_interview_config
    >>>
    >>> orchestrator = InterviewOrchestrator.from_config(load_interview_config())
    >>> session = await orchestrator.start_round("screening")
    >>> print(session.join_url, orchestrator.is_fallback_active)
    >>> await orchestrator.advance_to_next_round()
"""

from .models import (
    Avatar,
    BackendKind,
    ConnectionQuality,
    ConnectionState,
    ConnectionStatus,
    InterviewRound,
    InterviewSession,
    OrchestratorState,
    RoundArtifacts,
    SessionProperties,
    SessionRequest,
    MOCK_SESSION_PREFIX,
    is_mock_join_url,
    is_mock_session_id,
)

from .errors import (
    InterviewSessionError,
    InterviewValidationError,
    InvalidOperationError,
    NoActiveRoundError,
    NoInterviewerAvailableError,
    ProviderError,
    ProviderNotConfiguredError,
    RoundAlreadyCompletedError,
)

from .config import InterviewConfig, load_interview_config

from .client import (
    AvatarProviderClient,
    ReplicaList,
    UnknownEnvelope,
    decode_replica_envelope,
)

from .catalog import RoundCatalog, RoundDefinition

from .backend import (
    MockSessionBackend,
    RemoteSessionBackend,
    SessionBackend,
    select_backend,
)

from .health import (
    ConnectionHealthMonitor,
    DeviceAccessError,
    DeviceErrorKind,
    DevicePermissions,
    HttpLatencyProbe,
    Subscription,
    classify_latency,
)

from .frame import FrameControlChannel, FrameEvent, FrameMessageType

from .orchestrator import InterviewOrchestrator


__all__ = [
    # Models
    "Avatar",
    "BackendKind",
    "ConnectionQuality",
    "ConnectionState",
    "ConnectionStatus",
    "InterviewRound",
    "InterviewSession",
    "OrchestratorState",
    "RoundArtifacts",
    "SessionProperties",
    "SessionRequest",
    "MOCK_SESSION_PREFIX",
    "is_mock_join_url",
    "is_mock_session_id",
    # Errors
    "InterviewSessionError",
    "InterviewValidationError",
    "InvalidOperationError",
    "NoActiveRoundError",
    "NoInterviewerAvailableError",
    "ProviderError",
    "ProviderNotConfiguredError",
    "RoundAlreadyCompletedError",
    # Config
    "InterviewConfig",
    "load_interview_config",
    # Client
    "AvatarProviderClient",
    "ReplicaList",
    "UnknownEnvelope",
    "decode_replica_envelope",
    # Catalog
    "RoundCatalog",
    "RoundDefinition",
    # Backends
    "MockSessionBackend",
    "RemoteSessionBackend",
    "SessionBackend",
    "select_backend",
    # Health
    "ConnectionHealthMonitor",
    "DeviceAccessError",
    "DeviceErrorKind",
    "DevicePermissions",
    "HttpLatencyProbe",
    "Subscription",
    "classify_latency",
    # Frame
    "FrameControlChannel",
    "FrameEvent",
    "FrameMessageType",
    # Orchestrator
    "InterviewOrchestrator",
]

__version__ = "0.1.0"
