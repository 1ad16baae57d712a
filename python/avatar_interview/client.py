"""
Video-avatar provider API client.

Typed async wrapper around the provider's HTTP API: list replicas,
create / fetch / end conversations, and fetch recordings or transcripts
after a conversation has finished.

The provider's list envelope is not contractually stable, so replica
listings are decoded into a small tagged union (ReplicaList or
UnknownEnvelope) instead of being trusted structurally.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import httpx
from pydantic import ValidationError

from .errors import InterviewValidationError, ProviderError, ProviderNotConfiguredError
from .models import Avatar, InterviewSession, SessionProperties, SessionRequest


__all__ = [
    "AvatarProviderClient",
    "ReplicaList",
    "UnknownEnvelope",
    "decode_replica_envelope",
    "DEFAULT_BASE_URL",
    "API_KEY_PLACEHOLDER",
]


logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://tavusapi.com"
API_KEY_PLACEHOLDER = "your_tavus_api_key_here"
DEFAULT_TIMEOUT_SECONDS = 30.0

ENVELOPE_KEYS = ("data", "replicas", "results")


# =============================================================================
# Replica Envelope Decoding
# =============================================================================


@dataclass(frozen=True)
class ReplicaList:
    """A recognized replica listing."""

    items: tuple[Avatar, ...]
    source_key: Optional[str] = None


@dataclass(frozen=True)
class UnknownEnvelope:
    """A listing whose shape was not recognized. Treated as empty."""

    raw: Any = field(repr=False)

    @property
    def items(self) -> tuple[Avatar, ...]:
        return ()


ReplicaEnvelope = Union[ReplicaList, UnknownEnvelope]


def _decode_items(rows: list[Any]) -> tuple[Avatar, ...]:
    avatars: list[Avatar] = []
    for row in rows:
        if not isinstance(row, dict):
            logger.warning("Skipping non-object replica entry: %r", row)
            continue
        try:
            avatars.append(Avatar.model_validate(row))
        except ValidationError as e:
            logger.warning("Skipping malformed replica entry: %s", e)
    return tuple(avatars)


def decode_replica_envelope(payload: Any) -> ReplicaEnvelope:
    """
    Decode a replica listing response.

    Accepts a bare array or an object wrapping the array under 'data',
    'replicas' or 'results'. Anything else decodes to UnknownEnvelope.

    Example:
        >>> decode_replica_envelope({"data": [{"replica_id": "r1", "status": "ready"}]}).items[0].replica_id
        'r1'
    """
    if isinstance(payload, list):
        return ReplicaList(items=_decode_items(payload))

    if isinstance(payload, dict):
        for key in ENVELOPE_KEYS:
            rows = payload.get(key)
            if isinstance(rows, list):
                return ReplicaList(items=_decode_items(rows), source_key=key)

    return UnknownEnvelope(raw=payload)


def is_configured_value(value: Optional[str], placeholder: Optional[str] = None) -> bool:
    """Return True if a config value is set and is not the documented placeholder."""
    normalized = (value or "").strip()
    if not normalized:
        return False
    return placeholder is None or normalized != placeholder


def _extract_error_message(response: httpx.Response) -> str:
    text = response.text
    try:
        data = response.json()
    except ValueError:
        return text or response.reason_phrase
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if message:
            return str(message)
    return text or response.reason_phrase


# =============================================================================
# Client
# =============================================================================


class AvatarProviderClient:
    """
    Async client for the video-avatar provider API.

    The API key is read once at construction; a missing or placeholder key
    fails construction immediately with ProviderNotConfiguredError.

    Example:
        >>> async with AvatarProviderClient(api_key="tvs_...") as client:
        ...     replicas = await client.list_replicas()
        ...     session = await client.create_session(
        ...         replicas[0].replica_id,
        ...         conversation_name="Technical Round",
        ...     )
    """

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not is_configured_value(api_key, API_KEY_PLACEHOLDER):
            raise ProviderNotConfiguredError()

        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "x-api-key": api_key.strip(),
                "Content-Type": "application/json",
            },
            timeout=timeout_seconds,
            transport=transport,
        )
        logger.info("AvatarProviderClient initialized: base_url=%s", self.base_url)

    async def __aenter__(self) -> "AvatarProviderClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        logger.debug("Provider request: %s %s", method, path)
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise ProviderError(None, str(e) or e.__class__.__name__) from e

        if response.status_code >= 400:
            message = _extract_error_message(response)
            logger.error(
                "Provider error response: %s %s -> %d %s",
                method,
                path,
                response.status_code,
                message[:200],
            )
            raise ProviderError(response.status_code, message)

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError:
            logger.warning("Provider returned non-JSON body for %s %s", method, path)
            return None

    async def list_replicas(self) -> list[Avatar]:
        """
        List replicas available to this account.

        Unrecognized envelopes yield an empty list.

        Raises:
            ProviderError: On transport failure or non-2xx response.
        """
        payload = await self._request("GET", "/v2/replicas")
        envelope = decode_replica_envelope(payload)
        if isinstance(envelope, UnknownEnvelope):
            logger.warning("Unexpected replicas response format: %r", type(payload).__name__)
        return list(envelope.items)

    async def create_session(
        self,
        replica_id: Optional[str],
        *,
        conversation_name: str,
        persona_id: Optional[str] = None,
        callback_url: Optional[str] = None,
        properties: Optional[SessionProperties] = None,
        round_id: Optional[str] = None,
    ) -> InterviewSession:
        """
        Create a provider conversation.

        Raises:
            InterviewValidationError: If replica_id is absent.
            ProviderError: On transport failure, non-2xx response, or a
                response lacking the conversation id / url.
        """
        if not (replica_id or "").strip():
            raise InterviewValidationError("replica_id is required to create a session.")

        request = SessionRequest(
            replica_id=replica_id,
            persona_id=persona_id,
            conversation_name=conversation_name,
            callback_url=callback_url,
            properties=properties or SessionProperties(),
        )
        payload = await self._request("POST", "/v2/conversations", json=request.to_payload())
        if not isinstance(payload, dict):
            raise ProviderError(None, "Create conversation returned an empty response.")

        try:
            session = InterviewSession.from_provider(payload, round_id=round_id)
        except ValidationError as e:
            raise ProviderError(None, f"Create conversation response is incomplete: {e}") from e

        logger.info("Created provider session %s (round=%s)", session.session_id, round_id)
        return session

    async def get_session(self, session_id: str) -> InterviewSession:
        """Fetch a conversation descriptor by id."""
        payload = await self._request("GET", f"/v2/conversations/{session_id}")
        if not isinstance(payload, dict):
            raise ProviderError(None, f"Conversation {session_id} returned an empty response.")
        try:
            return InterviewSession.from_provider(payload)
        except ValidationError as e:
            raise ProviderError(None, f"Conversation response is incomplete: {e}") from e

    async def end_session(self, session_id: str) -> None:
        """
        End a conversation.

        Callers must treat failure as non-fatal to local cleanup.
        """
        await self._request("DELETE", f"/v2/conversations/{session_id}")
        logger.info("Ended provider session %s", session_id)

    async def _fetch_optional(self, path: str, key: str) -> Optional[str]:
        try:
            payload = await self._request("GET", path)
        except ProviderError as e:
            if e.status_code == 404:
                logger.info("Resource not available yet: %s", path)
                return None
            raise
        if isinstance(payload, dict):
            value = payload.get(key)
            return str(value) if value else None
        return None

    async def fetch_recording(self, session_id: str) -> Optional[str]:
        """Return the recording URL, or None if not (yet) available."""
        return await self._fetch_optional(
            f"/v2/conversations/{session_id}/recording", "recording_url"
        )

    async def fetch_transcript(self, session_id: str) -> Optional[str]:
        """Return the transcript text, or None if not (yet) available."""
        return await self._fetch_optional(
            f"/v2/conversations/{session_id}/transcript", "transcript"
        )
