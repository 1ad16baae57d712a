"""
Interview Session Orchestrator.

Creates, monitors and tears down provider sessions for a multi-round
interview, sequencing rounds strictly forward through the catalog and
degrading to the mock backend when the provider is unreachable.

States:
    idle -> resolving -> active -> ending -> idle
    resolving / active -> failed (failed is re-enterable via start_round)

Thread Safety:
    Not thread-safe. An orchestrator is owned by one event loop; callers
    must let start_round / end_round settle before issuing the next call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import httpx

from .backend import MockSessionBackend, SessionBackend, select_backend
from .catalog import RoundCatalog
from .config import InterviewConfig
from .errors import (
    InterviewSessionError,
    InterviewValidationError,
    InvalidOperationError,
    NoActiveRoundError,
    NoInterviewerAvailableError,
    ProviderError,
    RoundAlreadyCompletedError,
)
from .frame import FrameControlChannel, FrameMessageType
from .health import ConnectionHealthMonitor, Subscription
from .models import (
    Avatar,
    BackendKind,
    ConnectionState,
    ConnectionStatus,
    InterviewRound,
    InterviewSession,
    OrchestratorState,
    RoundArtifacts,
    SessionProperties,
    utc_timestamp,
)


__all__ = ["InterviewOrchestrator", "ADVANCE_DELAY_SECONDS"]


logger = logging.getLogger(__name__)


ADVANCE_DELAY_SECONDS = 1.0
TEARDOWN_END_TIMEOUT_SECONDS = 5.0


class InterviewOrchestrator:
    """
    Session state machine for one candidate's interview.

    Responsibilities:
        - Resolve a round and a ready avatar, then create a session
        - Track the active session, current round and completed rounds
        - Advance through rounds in catalog order after a short delay
        - Switch to the mock backend for good on provider failure
        - Route inbound frame events into connection status / round end

    Example:
        >>> orchestrator = InterviewOrchestrator.from_config(load_interview_config())
        >>> session = await orchestrator.start_round("screening")
        >>> next_round = await orchestrator.advance_to_next_round()
        >>> await orchestrator.wait_for_pending_start()
        >>> await orchestrator.teardown()
    """

    def __init__(
        self,
        catalog: RoundCatalog,
        backend: SessionBackend,
        *,
        monitor: Optional[ConnectionHealthMonitor] = None,
        frame: Optional[FrameControlChannel] = None,
        interview_type: Optional[str] = None,
        candidate_name: str = "Candidate",
        role: Optional[str] = None,
        callback_url: Optional[str] = None,
        session_properties: Optional[SessionProperties] = None,
        advance_delay_seconds: float = ADVANCE_DELAY_SECONDS,
        teardown_timeout_seconds: float = TEARDOWN_END_TIMEOUT_SECONDS,
    ) -> None:
        if advance_delay_seconds < 0:
            raise ValueError("advance_delay_seconds must be >= 0")

        self._catalog = catalog
        self._backend = backend
        self._primary_backend = backend
        self.monitor = monitor or ConnectionHealthMonitor()
        self.frame = frame
        self.interview_type = interview_type
        self.candidate_name = candidate_name
        self.role = role
        self.callback_url = callback_url
        self.session_properties = session_properties or SessionProperties()
        self.advance_delay_seconds = advance_delay_seconds
        self.teardown_timeout_seconds = teardown_timeout_seconds

        self._state = OrchestratorState.IDLE
        self._session: Optional[InterviewSession] = None
        self._current_round: Optional[InterviewRound] = None
        self._completed_rounds: list[str] = []
        self._ended_sessions: list[InterviewSession] = []
        self._session_backends: dict[str, SessionBackend] = {}
        self._subscriptions: list[Subscription] = []
        self._pending_start: Optional[asyncio.Task[Optional[InterviewSession]]] = None
        self._pending_round_id: Optional[str] = None
        self._fallback_reason: Optional[str] = None
        self._error: Optional[str] = None
        self._disposed = False

        logger.info(
            "InterviewOrchestrator initialized: backend=%s rounds=%s interview_type=%s",
            backend.kind.value,
            [r.id for r in catalog.list_rounds()],
            interview_type,
        )

    @classmethod
    def from_config(
        cls,
        config: InterviewConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ) -> "InterviewOrchestrator":
        """
        Build an orchestrator, its catalog, backend and frame channel from config.

        In mock mode with no round configured, every round is served by a
        synthetic avatar so the interview can still run end to end.
        """
        backend = select_backend(config, transport=transport)
        catalog = RoundCatalog.from_config(config)
        if backend.kind == BackendKind.MOCK and not len(catalog):
            logger.warning("No interview rounds configured. Using demo round catalog.")
            catalog = RoundCatalog.demo()

        kwargs.setdefault("frame", FrameControlChannel(config.frame_origin))
        kwargs.setdefault("interview_type", config.interview_type)
        kwargs.setdefault("callback_url", config.callback_url)
        kwargs.setdefault("advance_delay_seconds", config.advance_delay_seconds)
        kwargs.setdefault(
            "session_properties",
            SessionProperties(apply_greenscreen=config.apply_greenscreen),
        )
        return cls(catalog, backend, **kwargs)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def session(self) -> Optional[InterviewSession]:
        return self._session

    @property
    def current_round(self) -> Optional[InterviewRound]:
        return self._current_round

    @property
    def completed_rounds(self) -> tuple[str, ...]:
        return tuple(self._completed_rounds)

    @property
    def ended_sessions(self) -> tuple[InterviewSession, ...]:
        return tuple(self._ended_sessions)

    @property
    def catalog(self) -> RoundCatalog:
        return self._catalog

    @property
    def backend_kind(self) -> BackendKind:
        return self._backend.kind

    @property
    def is_fallback_active(self) -> bool:
        return self._backend.kind == BackendKind.MOCK

    @property
    def fallback_reason(self) -> Optional[str]:
        return self._fallback_reason

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def pending_round_id(self) -> Optional[str]:
        return self._pending_round_id

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def is_complete(self) -> bool:
        """True once the last completed round has no unfinished successor."""
        if self._session is not None or self._pending_start is not None:
            return False
        if not self._completed_rounds:
            return False
        return self._next_round_after(self._completed_rounds[-1]) is None

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.monitor.status

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _transition(self, new_state: OrchestratorState) -> None:
        if new_state != self._state:
            logger.info("Orchestrator state: %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    def _ensure_usable(self) -> None:
        if self._disposed:
            raise InvalidOperationError("Orchestrator has been torn down.")
        if self._state in (OrchestratorState.RESOLVING, OrchestratorState.ENDING):
            raise InvalidOperationError(
                f"Cannot start or end a round while {self._state.value}; wait for it to settle."
            )

    def _activate_fallback(self, reason: str) -> None:
        if self._backend.kind == BackendKind.MOCK:
            return
        logger.warning("Switching to mock AI interviewer: %s", reason)
        self._backend = MockSessionBackend()
        self._fallback_reason = reason

    def _next_round_after(self, round_id: str) -> Optional[InterviewRound]:
        for candidate in self._catalog.rounds_after(round_id):
            if candidate.id not in self._completed_rounds:
                return candidate
        return None

    def _resolve_round_id(self, round_id: Optional[str]) -> str:
        if round_id is not None and round_id.strip():
            return round_id.strip().lower()

        resolved = self._catalog.round_for_type(self.interview_type)
        if resolved is None:
            raise InterviewValidationError(
                f"No interview round can be resolved for interview type '{self.interview_type}'."
            )
        return resolved.id

    def _conversation_name(self, interview_round: InterviewRound) -> str:
        return (
            f"{self.role or 'General'} Interview - {self.candidate_name} - {interview_round.name}"
        )

    async def _list_ready_avatars(self, interview_round: InterviewRound) -> list[Avatar]:
        try:
            avatars = await self._backend.list_avatars(interview_round)
        except ProviderError as e:
            self._activate_fallback(f"listing avatars failed: {e.message}")
            avatars = await self._backend.list_avatars(interview_round)
        return [avatar for avatar in avatars if avatar.is_ready]

    async def _create_session(
        self,
        interview_round: InterviewRound,
        avatar: Avatar,
    ) -> InterviewSession:
        request_kwargs = {
            "conversation_name": self._conversation_name(interview_round),
            "callback_url": self.callback_url,
            "properties": self.session_properties,
        }
        try:
            return await self._backend.create_session(interview_round, avatar, **request_kwargs)
        except ProviderError as e:
            self._activate_fallback(f"creating session failed: {e.message}")
            mock_avatar = MockSessionBackend.avatar_for(interview_round)
            return await self._backend.create_session(interview_round, mock_avatar, **request_kwargs)

    def _fail(self, message: str) -> None:
        self._error = message
        self._transition(OrchestratorState.FAILED)
        self.monitor.update(status=ConnectionState.FAILED, error=message)

    # -------------------------------------------------------------------------
    # Round Operations
    # -------------------------------------------------------------------------

    async def start_round(self, round_id: Optional[str] = None) -> InterviewSession:
        """
        Start a round and create its session.

        Args:
            round_id: Round to start. If omitted, resolved from interview_type.

        Returns:
            The active session.

        Raises:
            InterviewValidationError: If no round can be resolved from the interview type.
            RoundAlreadyCompletedError: If the round was already completed.
            NoInterviewerAvailableError: If no ready avatar is bound to the round.
            InvalidOperationError: If torn down or another start/end is in progress.
        """
        self._ensure_usable()

        # Rejected starts leave the active session and any scheduled start untouched.
        target_id = self._resolve_round_id(round_id)
        if target_id in self._completed_rounds:
            raise RoundAlreadyCompletedError(target_id)

        current = asyncio.current_task()
        if self._pending_start is not None and self._pending_start is not current:
            self._cancel_pending_start()

        if (
            self._session is not None
            and self._current_round is not None
            and self._current_round.id == target_id
        ):
            logger.info("Round %s is already active", target_id)
            return self._session

        if self._session is not None:
            logger.info("Ending active round before starting %s", target_id)
            await self.end_round()

        self._error = None
        self._transition(OrchestratorState.RESOLVING)
        self.monitor.update(status=ConnectionState.CONNECTING, error=None)

        try:
            interview_round = self._catalog.get_round(target_id)
            if interview_round is None:
                raise NoInterviewerAvailableError(
                    target_id,
                    f"No AI interviewer configured for round '{target_id}'.",
                )

            ready = await self._list_ready_avatars(interview_round)
            if not ready:
                raise NoInterviewerAvailableError(target_id)

            session = await self._create_session(interview_round, ready[0])
        except InterviewSessionError as e:
            self._fail(e.message)
            raise
        except Exception as e:
            self._fail(f"Failed to start interview: {e}")
            raise

        self._session = session
        self._current_round = interview_round
        self._session_backends[session.session_id] = self._backend
        self._transition(OrchestratorState.ACTIVE)
        if session.is_mock:
            self.monitor.update(status=ConnectionState.CONNECTED)

        logger.info(
            "Round %s active: session=%s backend=%s",
            interview_round.id,
            session.session_id,
            self._backend.kind.value,
        )
        return session

    async def end_round(self) -> Optional[InterviewSession]:
        """
        End the active round.

        No-op when no session is active. Termination failures are logged and
        swallowed; local state always returns to idle.

        Returns:
            The ended session, or None if nothing was active.
        """
        if self._session is None or self._current_round is None:
            logger.debug("end_round called but no active session")
            return None
        if self._state == OrchestratorState.ENDING:
            raise InvalidOperationError("end_round already in progress.")

        session = self._session
        interview_round = self._current_round
        backend = self._session_backends.get(session.session_id, self._backend)

        self._completed_rounds.append(interview_round.id)
        self._transition(OrchestratorState.ENDING)

        try:
            await backend.end_session(session)
        except Exception as e:  # noqa: BLE001 - leaving the interview must never fail
            logger.warning(
                "Failed to end session %s (continuing local cleanup): %s",
                session.session_id,
                e,
            )
        finally:
            ended = session.model_copy(update={"status": "ended", "ended_at": utc_timestamp()})
            self._ended_sessions.append(ended)
            self._session = None
            self._current_round = None
            self._transition(OrchestratorState.IDLE)
            self.monitor.update(
                status=ConnectionState.DISCONNECTED,
                camera=False,
                microphone=False,
            )

        logger.info(
            "Round %s ended (completed=%s)",
            interview_round.id,
            self._completed_rounds,
        )
        return ended

    async def advance_to_next_round(self) -> Optional[InterviewRound]:
        """
        End the current round and schedule the next one in catalog order.

        Returns:
            The round scheduled to start after the advance delay, or None if
            the interview is complete.

        Raises:
            NoActiveRoundError: If no round is active.
        """
        if self._session is None or self._current_round is None:
            raise NoActiveRoundError("Cannot advance: no active round.")

        current_round = self._current_round
        await self.end_round()

        next_round = self._next_round_after(current_round.id)
        if next_round is None:
            logger.info("Interview complete after round %s", current_round.id)
            return None

        self._pending_round_id = next_round.id
        self._pending_start = asyncio.create_task(
            self._start_after_delay(next_round.id),
            name=f"start-round-{next_round.id}",
        )
        logger.info(
            "Next round %s scheduled in %.1fs",
            next_round.id,
            self.advance_delay_seconds,
        )
        return next_round

    async def _start_after_delay(self, round_id: str) -> Optional[InterviewSession]:
        try:
            if self.advance_delay_seconds > 0:
                await asyncio.sleep(self.advance_delay_seconds)
            return await self.start_round(round_id)
        except InterviewSessionError as e:
            self._error = e.message
            logger.error("Failed to start next round %s: %s", round_id, e.message)
            return None
        except Exception as e:
            self._error = f"Failed to start next round {round_id}: {e}"
            logger.error("Failed to start next round %s: %s", round_id, e, exc_info=True)
            return None
        finally:
            if self._pending_start is asyncio.current_task():
                self._pending_start = None
                self._pending_round_id = None

    def _cancel_pending_start(self) -> None:
        if self._pending_start is not None and not self._pending_start.done():
            logger.info("Cancelling scheduled start of round %s", self._pending_round_id)
            self._pending_start.cancel()
        self._pending_start = None
        self._pending_round_id = None

    async def wait_for_pending_start(self) -> Optional[InterviewSession]:
        """Wait for a scheduled round start, returning its session (None if none/failed)."""
        task = self._pending_start
        if task is None:
            return None
        return await task

    # -------------------------------------------------------------------------
    # Status, Frame Events, Artifacts
    # -------------------------------------------------------------------------

    def subscribe(self, callback: Callable[[ConnectionStatus], None]) -> Subscription:
        """Subscribe to connection status; released automatically on teardown."""
        subscription = self.monitor.subscribe(callback)
        self._subscriptions.append(subscription)
        return subscription

    async def handle_frame_message(self, payload: Any, origin: Optional[str]) -> bool:
        """
        Apply an inbound frame message.

        Returns:
            True if the message was accepted, False if it was ignored.
        """
        if self.frame is None:
            return False

        event = self.frame.receive(payload, origin)
        if event is None:
            return False

        if event.type == FrameMessageType.CONNECTION_STATUS:
            try:
                status = ConnectionState(event.payload.get("status"))
            except ValueError:
                logger.debug("Ignoring unknown frame status: %s", event.payload.get("status"))
                return False
            self.monitor.update(status=status)
        elif event.type == FrameMessageType.ERROR:
            message = event.payload.get("message") or event.payload.get("error")
            self.monitor.update(
                status=ConnectionState.FAILED,
                error=str(message or "Interview frame reported an error"),
            )
        elif event.type == FrameMessageType.MEETING_ENDED:
            await self.end_round()
        return True

    def find_session(self, session_id: str) -> Optional[InterviewSession]:
        for session in reversed(self._ended_sessions):
            if session.session_id == session_id:
                return session
        if self._session is not None and self._session.session_id == session_id:
            return self._session
        return None

    async def fetch_round_artifacts(self, session_id: str) -> RoundArtifacts:
        """
        Fetch recording and transcript for a session created by this orchestrator.

        Mock sessions yield empty artifacts without network access.

        Raises:
            InterviewValidationError: If the session is unknown.
            ProviderError: If the provider rejects the request (other than 404).
        """
        session = self.find_session(session_id)
        if session is None:
            raise InterviewValidationError(f"Unknown session '{session_id}'.")

        artifacts = RoundArtifacts(session_id=session.session_id, round_id=session.round_id)
        if session.is_mock:
            return artifacts

        backend = self._session_backends.get(session.session_id, self._primary_backend)
        return artifacts.model_copy(
            update={
                "recording_url": await backend.fetch_recording(session),
                "transcript": await backend.fetch_transcript(session),
            }
        )

    def snapshot(self) -> dict[str, Any]:
        """Return a JSON-ready view of orchestrator state for presentation surfaces."""
        return {
            "state": self._state.value,
            "session": self._session.model_dump() if self._session else None,
            "current_round": self._current_round.model_dump() if self._current_round else None,
            "completed_rounds": list(self._completed_rounds),
            "pending_round_id": self._pending_round_id,
            "is_complete": self.is_complete,
            "backend": self._backend.kind.value,
            "fallback_active": self.is_fallback_active,
            "fallback_reason": self._fallback_reason,
            "error": self._error,
            "connection": self.monitor.status.model_dump(mode="json"),
        }

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def teardown(self) -> None:
        """
        Dispose of the orchestrator.

        Cancels any scheduled round start, detaches the frame, drops status
        subscriptions, and best-effort ends the active session without
        waiting longer than teardown_timeout_seconds.
        """
        if self._disposed:
            return
        self._disposed = True

        pending = self._pending_start
        self._cancel_pending_start()
        if pending is not None:
            try:
                await pending
            except asyncio.CancelledError:
                pass

        if self.frame is not None:
            self.frame.detach()

        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

        if self._session is not None:
            try:
                await asyncio.wait_for(self.end_round(), timeout=self.teardown_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning("Timed out ending session during teardown")

        await self._backend.aclose()
        if self._primary_backend is not self._backend:
            await self._primary_backend.aclose()
        logger.info("Orchestrator torn down (completed=%s)", self._completed_rounds)
