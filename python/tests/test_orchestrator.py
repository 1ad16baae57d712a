"""
Tests for InterviewOrchestrator.

Covers round start / end / advance, completed-round bookkeeping, mock
fallback, frame message routing, artifacts and teardown. The provider is
served by tests.mock_data.ProviderStub; rounds advance without delay
unless a test needs a pending start.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

import pytest
import pytest_asyncio

from avatar_interview import (
    BackendKind,
    ConnectionState,
    ConnectionStatus,
    InterviewOrchestrator,
    InterviewValidationError,
    InvalidOperationError,
    MockSessionBackend,
    NoActiveRoundError,
    NoInterviewerAvailableError,
    OrchestratorState,
    RoundAlreadyCompletedError,
    RoundCatalog,
)
from avatar_interview.config import STOCK_PERSONA_ID
from tests.mock_data import (
    FRAME_ORIGIN,
    REPLICA_IDS,
    FailingCreateBackend,
    FailingEndBackend,
    HangingEndBackend,
    ProviderStub,
    RecordingPoster,
    generate_replica_dict,
    make_config,
)


def build_orchestrator(stub: ProviderStub, **kwargs) -> InterviewOrchestrator:
    config_overrides = kwargs.pop("config", {})
    return InterviewOrchestrator.from_config(
        make_config(**config_overrides),
        transport=stub.transport(),
        **kwargs,
    )


@pytest.fixture
def stub() -> ProviderStub:
    return ProviderStub()


@pytest_asyncio.fixture
async def orchestrator(stub: ProviderStub) -> AsyncIterator[InterviewOrchestrator]:
    orchestrator = build_orchestrator(stub)
    yield orchestrator
    await orchestrator.teardown()


@pytest_asyncio.fixture
async def mock_orchestrator(stub: ProviderStub) -> AsyncIterator[InterviewOrchestrator]:
    orchestrator = build_orchestrator(stub, config={"api_key": None})
    yield orchestrator
    await orchestrator.teardown()


# =============================================================================
# Construction
# =============================================================================


class TestFromConfig:

    @pytest.mark.asyncio
    async def test_remote_backend_with_api_key(self, orchestrator):
        assert orchestrator.backend_kind == BackendKind.REMOTE
        assert not orchestrator.is_fallback_active
        assert orchestrator.state == OrchestratorState.IDLE
        assert orchestrator.frame is not None
        assert orchestrator.frame.provider_origin == FRAME_ORIGIN

    @pytest.mark.asyncio
    async def test_mock_backend_without_api_key(self, mock_orchestrator):
        assert mock_orchestrator.backend_kind == BackendKind.MOCK
        assert mock_orchestrator.is_fallback_active
        assert [r.id for r in mock_orchestrator.catalog.list_rounds()] == list(REPLICA_IDS)

    @pytest.mark.asyncio
    async def test_mock_mode_without_rounds_uses_demo_catalog(self, stub):
        orchestrator = build_orchestrator(stub, config={"api_key": None, "replica_ids": {}})

        assert len(orchestrator.catalog) == 3
        session = await orchestrator.start_round("behavioral")
        assert session.is_mock
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_remote_mode_without_rounds_has_empty_catalog(self, stub):
        orchestrator = build_orchestrator(stub, config={"replica_ids": {}})

        assert len(orchestrator.catalog) == 0
        with pytest.raises(NoInterviewerAvailableError):
            await orchestrator.start_round("screening")
        await orchestrator.teardown()

    def test_negative_advance_delay_rejected(self):
        with pytest.raises(ValueError):
            InterviewOrchestrator(
                RoundCatalog(REPLICA_IDS),
                MockSessionBackend(),
                advance_delay_seconds=-1,
            )


# =============================================================================
# Start Round
# =============================================================================


class TestStartRound:

    @pytest.mark.asyncio
    async def test_start_explicit_round(self, orchestrator, stub):
        session = await orchestrator.start_round("screening")

        assert session.session_id == "c000001"
        assert session.status == "active"
        assert session.round_id == "screening"
        assert orchestrator.session == session
        assert orchestrator.current_round.id == "screening"
        assert orchestrator.state == OrchestratorState.ACTIVE
        assert orchestrator.connection_status.status == ConnectionState.CONNECTING

        body = stub.create_bodies[0]
        assert body["replica_id"] == "r-screening"
        assert body["persona_id"] == STOCK_PERSONA_ID
        assert body["conversation_name"] == "General Interview - Candidate - HR Screening"
        assert "callback_url" not in body

    @pytest.mark.asyncio
    async def test_conversation_name_and_callback(self, stub):
        orchestrator = build_orchestrator(
            stub,
            candidate_name="Sam Lee",
            role="Backend Engineer",
            config={"host_origin": "https://interview.example.com"},
        )

        await orchestrator.start_round("technical")

        body = stub.create_bodies[0]
        assert body["conversation_name"] == "Backend Engineer Interview - Sam Lee - Technical Round"
        assert body["callback_url"] == "https://interview.example.com/api/tavus/callback"
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_round_resolved_from_interview_type(self, stub):
        orchestrator = build_orchestrator(stub, config={"interview_type": "technical"})

        session = await orchestrator.start_round()

        assert session.round_id == "technical"
        assert orchestrator.current_round.id == "technical"
        assert session.status == "active"
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_mixed_interview_type_starts_technical(self, stub):
        orchestrator = build_orchestrator(stub, config={"interview_type": "mixed"})

        session = await orchestrator.start_round()

        assert session.round_id == "technical"
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_unresolvable_interview_type(self, orchestrator, stub):
        with pytest.raises(InterviewValidationError):
            await orchestrator.start_round()

        assert orchestrator.state == OrchestratorState.IDLE
        assert stub.request_count == 0

    @pytest.mark.asyncio
    async def test_no_ready_avatar(self, stub):
        stub.replicas = [
            generate_replica_dict("r-screening"),
            generate_replica_dict("r-technical", status="training"),
        ]
        orchestrator = build_orchestrator(stub)

        with pytest.raises(NoInterviewerAvailableError) as exc_info:
            await orchestrator.start_round("technical")

        assert exc_info.value.round_id == "technical"
        assert orchestrator.session is None
        assert orchestrator.state == OrchestratorState.FAILED
        assert orchestrator.error == exc_info.value.message
        assert orchestrator.connection_status.status == ConnectionState.FAILED
        assert stub.create_bodies == []
        assert not orchestrator.is_fallback_active
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_round_without_configured_avatar(self, stub):
        orchestrator = build_orchestrator(stub, config={"replica_ids": {"screening": "r-screening"}})

        with pytest.raises(NoInterviewerAvailableError):
            await orchestrator.start_round("technical")

        assert orchestrator.session is None
        assert stub.request_count == 0
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, stub):
        stub.replicas = [generate_replica_dict("r-screening", status="training")]
        orchestrator = build_orchestrator(stub)

        with pytest.raises(NoInterviewerAvailableError):
            await orchestrator.start_round("screening")

        stub.replicas = [generate_replica_dict("r-screening")]
        session = await orchestrator.start_round("screening")

        assert session.round_id == "screening"
        assert orchestrator.state == OrchestratorState.ACTIVE
        assert orchestrator.error is None
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_completed_round_cannot_restart(self, orchestrator):
        await orchestrator.start_round("screening")
        await orchestrator.end_round()

        with pytest.raises(RoundAlreadyCompletedError):
            await orchestrator.start_round("screening")

        assert orchestrator.completed_rounds == ("screening",)

    @pytest.mark.asyncio
    async def test_completed_round_start_keeps_active_session(self, orchestrator, stub):
        await orchestrator.start_round("screening")
        await orchestrator.end_round()
        active = await orchestrator.start_round("technical")

        with pytest.raises(RoundAlreadyCompletedError):
            await orchestrator.start_round("screening")

        assert orchestrator.session == active
        assert orchestrator.current_round.id == "technical"
        assert orchestrator.state == OrchestratorState.ACTIVE
        assert orchestrator.completed_rounds == ("screening",)
        assert stub.ended == ["c000001"]

    @pytest.mark.asyncio
    async def test_completed_round_start_keeps_scheduled_round(self, stub):
        orchestrator = build_orchestrator(stub, advance_delay_seconds=0.05)
        await orchestrator.start_round("screening")
        await orchestrator.advance_to_next_round()

        with pytest.raises(RoundAlreadyCompletedError):
            await orchestrator.start_round("screening")

        assert orchestrator.pending_round_id == "technical"
        session = await orchestrator.wait_for_pending_start()
        assert session.round_id == "technical"
        assert orchestrator.current_round.id == "technical"
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_restarting_active_round_returns_same_session(self, orchestrator, stub):
        first = await orchestrator.start_round("screening")
        second = await orchestrator.start_round("screening")

        assert first == second
        assert len(stub.create_bodies) == 1

    @pytest.mark.asyncio
    async def test_switching_rounds_ends_active_session_first(self, orchestrator, stub):
        await orchestrator.start_round("screening")
        session = await orchestrator.start_round("behavioral")

        assert stub.ended == ["c000001"]
        assert orchestrator.completed_rounds == ("screening",)
        assert orchestrator.session == session
        assert orchestrator.current_round.id == "behavioral"

    @pytest.mark.asyncio
    async def test_start_after_teardown_fails(self, orchestrator):
        await orchestrator.teardown()

        with pytest.raises(InvalidOperationError):
            await orchestrator.start_round("screening")


# =============================================================================
# End Round
# =============================================================================


class TestEndRound:

    @pytest.mark.asyncio
    async def test_end_round(self, orchestrator, stub):
        await orchestrator.start_round("screening")

        ended = await orchestrator.end_round()

        assert ended.session_id == "c000001"
        assert ended.status == "ended"
        assert ended.ended_at is not None
        assert stub.ended == ["c000001"]
        assert orchestrator.completed_rounds == ("screening",)
        assert orchestrator.session is None
        assert orchestrator.current_round is None
        assert orchestrator.state == OrchestratorState.IDLE
        status = orchestrator.connection_status
        assert status.status == ConnectionState.DISCONNECTED
        assert status.camera is False
        assert status.microphone is False

    @pytest.mark.asyncio
    async def test_remote_end_failure_still_cleans_up(self, orchestrator, stub):
        stub.end_status = 500
        await orchestrator.start_round("technical")

        ended = await orchestrator.end_round()

        assert ended is not None
        assert orchestrator.completed_rounds == ("technical",)
        assert orchestrator.session is None
        assert orchestrator.state == OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_unexpected_end_failure_still_cleans_up(self):
        backend = FailingEndBackend()
        orchestrator = InterviewOrchestrator(RoundCatalog(REPLICA_IDS), backend)
        await orchestrator.start_round("screening")

        await orchestrator.end_round()

        assert backend.end_calls == 1
        assert orchestrator.completed_rounds == ("screening",)
        assert orchestrator.session is None
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_end_round_twice_is_noop(self, orchestrator, stub):
        await orchestrator.start_round("screening")
        await orchestrator.end_round()

        assert await orchestrator.end_round() is None
        assert orchestrator.completed_rounds == ("screening",)
        assert stub.ended == ["c000001"]

    @pytest.mark.asyncio
    async def test_end_round_without_session(self, orchestrator):
        assert await orchestrator.end_round() is None
        assert orchestrator.completed_rounds == ()
        assert orchestrator.state == OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_each_start_end_adds_one_completed_round(self, orchestrator):
        for round_id in ("behavioral", "screening", "technical"):
            before = orchestrator.completed_rounds
            await orchestrator.start_round(round_id)
            await orchestrator.end_round()
            assert orchestrator.completed_rounds == before + (round_id,)

        assert orchestrator.is_complete


# =============================================================================
# Advance
# =============================================================================


class TestAdvance:

    @pytest.mark.asyncio
    async def test_advance_without_active_round(self, orchestrator):
        with pytest.raises(NoActiveRoundError):
            await orchestrator.advance_to_next_round()

    @pytest.mark.asyncio
    async def test_advance_walks_rounds_in_order(self, orchestrator):
        await orchestrator.start_round("screening")
        started: list[str] = ["screening"]

        while True:
            next_round = await orchestrator.advance_to_next_round()
            if next_round is None:
                break
            session = await orchestrator.wait_for_pending_start()
            assert session is not None
            assert session.round_id == next_round.id
            started.append(next_round.id)

        assert started == ["screening", "technical", "behavioral"]
        assert orchestrator.completed_rounds == ("screening", "technical", "behavioral")
        assert orchestrator.is_complete
        assert orchestrator.session is None

    @pytest.mark.asyncio
    async def test_advance_never_goes_backwards(self, orchestrator):
        await orchestrator.start_round("technical")

        next_round = await orchestrator.advance_to_next_round()
        assert next_round.id == "behavioral"
        await orchestrator.wait_for_pending_start()

        assert await orchestrator.advance_to_next_round() is None
        assert "screening" not in orchestrator.completed_rounds
        assert orchestrator.is_complete

    @pytest.mark.asyncio
    async def test_advance_skips_completed_rounds(self, orchestrator):
        await orchestrator.start_round("technical")
        await orchestrator.start_round("screening")

        next_round = await orchestrator.advance_to_next_round()

        assert next_round.id == "behavioral"
        await orchestrator.wait_for_pending_start()
        assert orchestrator.current_round.id == "behavioral"

    @pytest.mark.asyncio
    async def test_next_round_starts_after_delay(self, stub):
        orchestrator = build_orchestrator(stub, advance_delay_seconds=0.05)
        await orchestrator.start_round("screening")

        next_round = await orchestrator.advance_to_next_round()

        assert orchestrator.pending_round_id == "technical"
        assert orchestrator.session is None
        assert not orchestrator.is_complete
        session = await orchestrator.wait_for_pending_start()
        assert session.round_id == next_round.id
        assert orchestrator.pending_round_id is None
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_manual_start_cancels_pending_round(self, stub):
        orchestrator = build_orchestrator(stub, advance_delay_seconds=10)
        await orchestrator.start_round("screening")
        await orchestrator.advance_to_next_round()

        session = await orchestrator.start_round("behavioral")
        await asyncio.sleep(0)

        assert orchestrator.pending_round_id is None
        assert orchestrator.current_round.id == "behavioral"
        assert orchestrator.session == session
        assert len(stub.create_bodies) == 2
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_failed_next_round_is_reported(self, stub):
        stub.replicas = [generate_replica_dict("r-screening")]
        orchestrator = build_orchestrator(stub)
        await orchestrator.start_round("screening")

        await orchestrator.advance_to_next_round()
        session = await orchestrator.wait_for_pending_start()

        assert session is None
        assert orchestrator.state == OrchestratorState.FAILED
        assert "technical" in orchestrator.error
        assert orchestrator.pending_round_id is None
        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_unexpected_next_round_failure_is_reported(self):
        backend = FailingCreateBackend()
        orchestrator = InterviewOrchestrator(
            RoundCatalog(REPLICA_IDS),
            backend,
            advance_delay_seconds=0,
        )
        await orchestrator.start_round("screening")

        await orchestrator.advance_to_next_round()
        session = await orchestrator.wait_for_pending_start()

        assert session is None
        assert backend.create_calls == 2
        assert orchestrator.state == OrchestratorState.FAILED
        assert "malformed session payload" in orchestrator.error
        await orchestrator.teardown()


# =============================================================================
# Fallback
# =============================================================================


class TestFallback:

    @pytest.mark.asyncio
    async def test_mock_session_without_api_key(self, mock_orchestrator, stub):
        session = await mock_orchestrator.start_round("screening")

        assert session.session_id.startswith("mock-")
        assert session.is_mock
        assert session.status == "active"
        assert mock_orchestrator.connection_status.status == ConnectionState.CONNECTED

        ended = await mock_orchestrator.end_round()

        assert ended is not None
        assert mock_orchestrator.completed_rounds == ("screening",)
        assert stub.request_count == 0

    @pytest.mark.asyncio
    async def test_listing_failure_activates_fallback(self, orchestrator, stub):
        stub.replicas_status = 503

        session = await orchestrator.start_round("screening")

        assert session.is_mock
        assert orchestrator.is_fallback_active
        assert orchestrator.backend_kind == BackendKind.MOCK
        assert "503" in orchestrator.fallback_reason
        assert orchestrator.state == OrchestratorState.ACTIVE

    @pytest.mark.asyncio
    async def test_unreachable_provider_activates_fallback(self, orchestrator, stub):
        stub.unreachable = True

        session = await orchestrator.start_round("technical")

        assert session.is_mock
        assert session.round_id == "technical"
        assert orchestrator.is_fallback_active

    @pytest.mark.asyncio
    async def test_create_failure_activates_fallback(self, orchestrator, stub):
        stub.create_status = 500

        session = await orchestrator.start_round("behavioral")

        assert session.is_mock
        assert session.round_id == "behavioral"
        assert orchestrator.is_fallback_active

    @pytest.mark.asyncio
    async def test_fallback_is_sticky(self, orchestrator, stub):
        stub.replicas_status = 503
        await orchestrator.start_round("screening")
        stub.replicas_status = None
        requests_after_fallback = stub.request_count

        await orchestrator.end_round()
        session = await orchestrator.start_round("technical")

        assert session.is_mock
        assert stub.request_count == requests_after_fallback


# =============================================================================
# Frame Messages and Subscriptions
# =============================================================================


class TestFrameMessages:

    @pytest.mark.asyncio
    async def test_origin_mismatch_changes_nothing(self, orchestrator):
        session = await orchestrator.start_round("screening")
        status_before = orchestrator.connection_status

        accepted = await orchestrator.handle_frame_message(
            {"type": "meetingEnded"}, "https://evil.example.com"
        )

        assert accepted is False
        assert orchestrator.connection_status == status_before
        assert orchestrator.session == session

    @pytest.mark.asyncio
    async def test_connection_status_message(self, orchestrator):
        await orchestrator.start_round("screening")

        accepted = await orchestrator.handle_frame_message(
            {"type": "connectionStatus", "status": "connected"}, FRAME_ORIGIN
        )

        assert accepted
        assert orchestrator.connection_status.status == ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_unknown_connection_status_ignored(self, orchestrator):
        await orchestrator.start_round("screening")

        accepted = await orchestrator.handle_frame_message(
            {"type": "connectionStatus", "status": "sideways"}, FRAME_ORIGIN
        )

        assert accepted is False
        assert orchestrator.connection_status.status == ConnectionState.CONNECTING

    @pytest.mark.asyncio
    async def test_error_message(self, orchestrator):
        await orchestrator.start_round("screening")

        await orchestrator.handle_frame_message({"type": "error", "message": "ICE failed"}, FRAME_ORIGIN)

        assert orchestrator.connection_status.status == ConnectionState.FAILED
        assert orchestrator.connection_status.error == "ICE failed"

    @pytest.mark.asyncio
    async def test_meeting_ended_ends_round(self, orchestrator, stub):
        await orchestrator.start_round("screening")

        await orchestrator.handle_frame_message({"type": "meetingEnded"}, FRAME_ORIGIN)

        assert orchestrator.session is None
        assert orchestrator.completed_rounds == ("screening",)
        assert stub.ended == ["c000001"]

    @pytest.mark.asyncio
    async def test_subscriber_sees_status_sequence(self, mock_orchestrator):
        seen: list[ConnectionStatus] = []
        mock_orchestrator.subscribe(seen.append)

        await mock_orchestrator.start_round("screening")
        await mock_orchestrator.end_round()

        assert [s.status for s in seen] == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        ]


# =============================================================================
# Artifacts and Snapshot
# =============================================================================


class TestArtifacts:

    @pytest.mark.asyncio
    async def test_remote_artifacts(self, orchestrator, stub):
        stub.recordings["c000001"] = "https://cdn.test/c000001.mp4"
        stub.transcripts["c000001"] = "Interviewer: Welcome"
        await orchestrator.start_round("screening")
        await orchestrator.end_round()

        artifacts = await orchestrator.fetch_round_artifacts("c000001")

        assert artifacts.round_id == "screening"
        assert artifacts.recording_url == "https://cdn.test/c000001.mp4"
        assert artifacts.transcript == "Interviewer: Welcome"

    @pytest.mark.asyncio
    async def test_artifacts_not_ready(self, orchestrator):
        await orchestrator.start_round("screening")
        await orchestrator.end_round()

        artifacts = await orchestrator.fetch_round_artifacts("c000001")

        assert artifacts.recording_url is None
        assert artifacts.transcript is None

    @pytest.mark.asyncio
    async def test_mock_artifacts_are_empty(self, mock_orchestrator, stub):
        session = await mock_orchestrator.start_round("screening")
        await mock_orchestrator.end_round()

        artifacts = await mock_orchestrator.fetch_round_artifacts(session.session_id)

        assert artifacts.recording_url is None
        assert artifacts.transcript is None
        assert stub.request_count == 0

    @pytest.mark.asyncio
    async def test_remote_artifacts_after_fallback(self, orchestrator, stub):
        stub.transcripts["c000001"] = "Interviewer: Welcome"
        await orchestrator.start_round("screening")
        stub.create_status = 500
        await orchestrator.start_round("technical")
        assert orchestrator.is_fallback_active

        artifacts = await orchestrator.fetch_round_artifacts("c000001")

        assert artifacts.transcript == "Interviewer: Welcome"

    @pytest.mark.asyncio
    async def test_unknown_session(self, orchestrator):
        with pytest.raises(InterviewValidationError):
            await orchestrator.fetch_round_artifacts("c999999")

    @pytest.mark.asyncio
    async def test_snapshot(self, orchestrator):
        await orchestrator.start_round("technical")

        snapshot = orchestrator.snapshot()

        assert snapshot["state"] == "active"
        assert snapshot["session"]["session_id"] == "c000001"
        assert snapshot["current_round"]["id"] == "technical"
        assert snapshot["completed_rounds"] == []
        assert snapshot["backend"] == "remote"
        assert snapshot["fallback_active"] is False
        assert snapshot["connection"]["status"] == "connecting"


# =============================================================================
# Teardown
# =============================================================================


class TestTeardown:

    @pytest.mark.asyncio
    async def test_teardown_ends_active_session(self, stub):
        orchestrator = build_orchestrator(stub)
        await orchestrator.start_round("screening")

        await orchestrator.teardown()
        await orchestrator.teardown()

        assert orchestrator.is_disposed
        assert stub.ended == ["c000001"]
        assert orchestrator.session is None

    @pytest.mark.asyncio
    async def test_teardown_cancels_pending_start(self, stub):
        orchestrator = build_orchestrator(stub, advance_delay_seconds=10)
        await orchestrator.start_round("screening")
        await orchestrator.advance_to_next_round()
        assert orchestrator.pending_round_id == "technical"

        await orchestrator.teardown()

        assert orchestrator.pending_round_id is None
        assert orchestrator.session is None
        assert len(stub.create_bodies) == 1

    @pytest.mark.asyncio
    async def test_teardown_releases_subscriptions_and_frame(self, stub):
        orchestrator = build_orchestrator(stub)
        orchestrator.frame.attach(RecordingPoster())
        orchestrator.subscribe(lambda status: None)

        await orchestrator.teardown()

        assert orchestrator.monitor.subscriber_count == 0
        assert not orchestrator.frame.is_attached

    @pytest.mark.asyncio
    async def test_teardown_does_not_wait_forever_on_end(self):
        backend = HangingEndBackend()
        orchestrator = InterviewOrchestrator(
            RoundCatalog(REPLICA_IDS),
            backend,
            teardown_timeout_seconds=0.05,
        )
        await orchestrator.start_round("screening")

        await asyncio.wait_for(orchestrator.teardown(), timeout=2)

        assert backend.end_started.is_set()
        assert orchestrator.session is None
        assert orchestrator.state == OrchestratorState.IDLE
