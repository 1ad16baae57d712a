"""
Session backends.

A SessionBackend is the capability the orchestrator uses to list avatars
and create / end sessions. Two variants exist:

    - RemoteSessionBackend: talks to the provider through AvatarProviderClient.
    - MockSessionBackend: side-effect-free emulation used when the provider
      is unconfigured or unreachable. Mock avatars are always ready and mock
      sessions carry the "mock-" prefix so the presentation layer renders a
      simulated interviewer instead of loading the embedded frame.

select_backend() picks the variant once at startup.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from .client import AvatarProviderClient
from .config import InterviewConfig
from .errors import ProviderNotConfiguredError
from .models import (
    MOCK_JOIN_URL_BASE,
    MOCK_SESSION_PREFIX,
    Avatar,
    BackendKind,
    InterviewRound,
    InterviewSession,
    SessionProperties,
)


__all__ = [
    "SessionBackend",
    "RemoteSessionBackend",
    "MockSessionBackend",
    "select_backend",
]


logger = logging.getLogger(__name__)


class SessionBackend(Protocol):
    """Interface for session backends."""

    kind: BackendKind

    async def list_avatars(self, interview_round: InterviewRound) -> list[Avatar]:
        """Return avatars bound to the round."""

    async def create_session(
        self,
        interview_round: InterviewRound,
        avatar: Avatar,
        *,
        conversation_name: str,
        callback_url: Optional[str],
        properties: SessionProperties,
    ) -> InterviewSession:
        """Create a session for the round served by avatar."""

    async def end_session(self, session: InterviewSession) -> None:
        """End a session."""

    async def fetch_recording(self, session: InterviewSession) -> Optional[str]:
        """Return the recording URL of an ended session, if any."""

    async def fetch_transcript(self, session: InterviewSession) -> Optional[str]:
        """Return the transcript of an ended session, if any."""

    async def aclose(self) -> None:
        """Release backend resources."""


class RemoteSessionBackend:
    """Backend that delegates to the provider API."""

    kind = BackendKind.REMOTE

    def __init__(self, client: AvatarProviderClient) -> None:
        self._client = client

    @property
    def client(self) -> AvatarProviderClient:
        return self._client

    async def list_avatars(self, interview_round: InterviewRound) -> list[Avatar]:
        replicas = await self._client.list_replicas()
        return [r for r in replicas if r.replica_id == interview_round.replica_id]

    async def create_session(
        self,
        interview_round: InterviewRound,
        avatar: Avatar,
        *,
        conversation_name: str,
        callback_url: Optional[str],
        properties: SessionProperties,
    ) -> InterviewSession:
        return await self._client.create_session(
            avatar.replica_id,
            persona_id=interview_round.persona_id,
            conversation_name=conversation_name,
            callback_url=callback_url,
            properties=properties,
            round_id=interview_round.id,
        )

    async def end_session(self, session: InterviewSession) -> None:
        await self._client.end_session(session.session_id)

    async def fetch_recording(self, session: InterviewSession) -> Optional[str]:
        return await self._client.fetch_recording(session.session_id)

    async def fetch_transcript(self, session: InterviewSession) -> Optional[str]:
        return await self._client.fetch_transcript(session.session_id)

    async def aclose(self) -> None:
        await self._client.aclose()


class MockSessionBackend:
    """
    Local emulation of the provider. Never performs network access.

    Session ids are deterministic: "mock-<round>-<n>" where n counts
    sessions created by this backend instance.
    """

    kind = BackendKind.MOCK

    def __init__(self) -> None:
        self._sessions_created = 0

    @staticmethod
    def avatar_for(interview_round: InterviewRound) -> Avatar:
        return Avatar(
            replica_id=f"{MOCK_SESSION_PREFIX}replica-{interview_round.id}",
            replica_name=f"AI Interviewer ({interview_round.name})",
            status="ready",
        )

    async def list_avatars(self, interview_round: InterviewRound) -> list[Avatar]:
        return [self.avatar_for(interview_round)]

    async def create_session(
        self,
        interview_round: InterviewRound,
        avatar: Avatar,
        *,
        conversation_name: str,
        callback_url: Optional[str],
        properties: SessionProperties,
    ) -> InterviewSession:
        self._sessions_created += 1
        session_id = f"{MOCK_SESSION_PREFIX}{interview_round.id}-{self._sessions_created}"
        logger.info("Created mock session %s (%s)", session_id, conversation_name)
        return InterviewSession(
            session_id=session_id,
            join_url=f"{MOCK_JOIN_URL_BASE}/{session_id}",
            status="active",
            round_id=interview_round.id,
        )

    async def end_session(self, session: InterviewSession) -> None:
        logger.debug("Mock session %s ended locally", session.session_id)

    async def fetch_recording(self, session: InterviewSession) -> Optional[str]:
        return None

    async def fetch_transcript(self, session: InterviewSession) -> Optional[str]:
        return None

    async def aclose(self) -> None:
        return None


def select_backend(
    config: InterviewConfig,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SessionBackend:
    """
    Choose the session backend once at startup.

    Returns the mock backend when no valid API key is configured or when
    client construction fails.
    """
    if not config.has_api_key:
        logger.warning("Provider API key not configured. Using mock AI interviewer.")
        return MockSessionBackend()

    try:
        client = AvatarProviderClient(
            config.api_key,
            base_url=config.base_url,
            transport=transport,
        )
    except ProviderNotConfiguredError as e:
        logger.warning("Provider client unavailable (%s). Using mock AI interviewer.", e)
        return MockSessionBackend()

    return RemoteSessionBackend(client)
