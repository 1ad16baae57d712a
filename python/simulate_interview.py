#!/usr/bin/env python3
"""
Multi-Round Interview Simulator.

Drives the avatar interview host through every configured round, exactly
as the candidate-facing UI would: start the first round, report device
and frame status, advance, wait for the next round to become active, and
finally fetch the artifacts of each ended session.

Usage:
    # Start the host first (mock mode when TAVUS_API_KEY is unset):
    uv run python interview_host.py

    # In another terminal, run the simulator:
    uv run python simulate_interview.py

    # With custom options:
    uv run python simulate_interview.py --host-url http://localhost:8770 --candidate "Jane Doe"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Final, Optional

import httpx

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


# =============================================================================
# Exit Codes
# =============================================================================

EXIT_SUCCESS: Final[int] = 0
EXIT_CONNECTION_ERROR: Final[int] = 1
EXIT_HOST_UNHEALTHY: Final[int] = 2
EXIT_ROUND_ERROR: Final[int] = 3
EXIT_INTERRUPTED: Final[int] = 130  # Standard SIGINT exit code


# =============================================================================
# Configuration
# =============================================================================

DEFAULT_HOST_URL: Final[str] = "http://127.0.0.1:8770"
DEFAULT_CANDIDATE_NAME: Final[str] = "Sarah Chen"
DEFAULT_ROLE: Final[str] = "Software Engineer"
DEFAULT_ROUND_SECONDS: Final[float] = 2.0
POLL_INTERVAL_SECONDS: Final[float] = 0.25
NEXT_ROUND_TIMEOUT_SECONDS: Final[float] = 15.0


class SimulationError(Exception):
    """Raised when the host rejects a simulated step."""


def _raise_for_error(resp: httpx.Response, step: str) -> dict[str, Any]:
    data: dict[str, Any] = resp.json()
    if resp.status_code != 200 or not data.get("ok", False):
        raise SimulationError(
            f"{step} failed ({resp.status_code}): {data.get('error') or data.get('message')}"
        )
    return data


async def _wait_for_round(client: httpx.AsyncClient, host_url: str, round_id: str) -> dict[str, Any]:
    """Poll session status until round_id is active."""
    deadline = asyncio.get_running_loop().time() + NEXT_ROUND_TIMEOUT_SECONDS
    while True:
        status = _raise_for_error(await client.get(f"{host_url}/session/status"), "Status")["status"]
        current = status.get("current_round") or {}
        if current.get("id") == round_id and status.get("state") == "active":
            return status
        if status.get("state") == "failed" or (
            status.get("pending_round_id") is None and status.get("error")
        ):
            raise SimulationError(f"Round {round_id} failed to start: {status.get('error')}")
        if asyncio.get_running_loop().time() > deadline:
            raise SimulationError(f"Timed out waiting for round {round_id}")
        await asyncio.sleep(POLL_INTERVAL_SECONDS)


async def run_simulation(
    host_url: str,
    candidate_name: str,
    role: str,
    round_seconds: float,
    frame_origin: Optional[str] = None,
) -> int:
    """
    Walk every configured round through the host service.

    Args:
        host_url: URL of the interview host service.
        candidate_name: Name of the interview candidate.
        role: Role being interviewed for.
        round_seconds: How long to stay in each round.
        frame_origin: Origin to report frame messages from. Skipped when None.

    Returns:
        Exit code indicating success or failure.
    """
    async with httpx.AsyncClient(timeout=30.0) as client:
        logger.info("Checking interview host health...")
        try:
            resp = await client.get(f"{host_url}/health")
            if resp.status_code != 200:
                logger.error("Host not healthy: %d", resp.status_code)
                return EXIT_HOST_UNHEALTHY
            health: dict[str, Any] = resp.json()
            logger.info("Host healthy: backend=%s", health.get("backend"))
        except httpx.ConnectError:
            logger.error("Cannot connect to host at %s. Is it running?", host_url)
            logger.error("Start it with: uv run python interview_host.py")
            return EXIT_CONNECTION_ERROR

        try:
            rounds_data = _raise_for_error(await client.get(f"{host_url}/rounds"), "List rounds")
            rounds: list[dict[str, Any]] = rounds_data["rounds"]
            if not rounds:
                logger.error("No interview rounds configured")
                return EXIT_ROUND_ERROR
            logger.info("Rounds: %s", ", ".join(r["name"] for r in rounds))

            await client.post(
                f"{host_url}/connection/devices",
                json={"camera": True, "microphone": True},
            )

            logger.info("\n%s", "=" * 60)
            logger.info("Starting interview for: %s (%s)", candidate_name, role)
            logger.info("%s\n", "=" * 60)

            started = _raise_for_error(
                await client.post(
                    f"{host_url}/rounds/start",
                    json={
                        "round_id": rounds[0]["id"],
                        "candidate_name": candidate_name,
                        "role": role,
                    },
                ),
                "Start round",
            )
            status: dict[str, Any] = started["status"]
            session_ids: list[str] = []

            while True:
                session = status["session"]
                round_info = status["current_round"]
                session_ids.append(session["session_id"])
                logger.info(
                    "[%s] active: session=%s fallback=%s",
                    round_info["name"],
                    session["session_id"],
                    status["fallback_active"],
                )

                if frame_origin:
                    await client.post(
                        f"{host_url}/frame/message",
                        json={"origin": frame_origin, "data": {"type": "connectionStatus", "status": "connected"}},
                    )

                await asyncio.sleep(round_seconds)

                advanced = _raise_for_error(
                    await client.post(f"{host_url}/rounds/advance"),
                    "Advance",
                )
                if advanced["interview_complete"]:
                    break

                logger.info("Next round scheduled: %s", advanced["next_round_id"])
                status = await _wait_for_round(client, host_url, advanced["next_round_id"])
        except SimulationError as exc:
            logger.error("%s", exc)
            return EXIT_ROUND_ERROR
        except httpx.RequestError as exc:
            logger.error("Request failed: %s", exc)
            return EXIT_CONNECTION_ERROR

        logger.info("\n%s", "=" * 60)
        logger.info("Interview simulation complete! Rounds: %d", len(session_ids))
        logger.info("%s", "=" * 60)

        for session_id in session_ids:
            resp = await client.get(f"{host_url}/sessions/{session_id}/artifacts")
            if resp.status_code != 200:
                logger.warning("Artifacts for %s unavailable: %s", session_id, resp.text)
                continue
            artifacts: dict[str, Any] = resp.json()
            logger.info(
                "Session %s: recording=%s transcript_file=%s",
                session_id,
                artifacts.get("recording_url"),
                artifacts.get("transcript_file"),
            )

    return EXIT_SUCCESS


def main(
    host_url: str | None = None,
    candidate_name: str | None = None,
    role: str | None = None,
    round_seconds: float = DEFAULT_ROUND_SECONDS,
    frame_origin: str | None = None,
) -> int:
    """
    Main entry point for the interview simulator.

    Returns:
        Exit code indicating success or failure.
    """
    resolved_host_url = host_url or os.environ.get("HOST_URL", DEFAULT_HOST_URL)
    resolved_candidate = candidate_name or os.environ.get("CANDIDATE_NAME", DEFAULT_CANDIDATE_NAME)
    resolved_role = role or os.environ.get("CANDIDATE_ROLE", DEFAULT_ROLE)

    logger.info("=" * 60)
    logger.info("Avatar Interview Simulator")
    logger.info("=" * 60)
    logger.info("Target: %s", resolved_host_url)
    logger.info("Candidate: %s", resolved_candidate)
    logger.info("")

    try:
        return asyncio.run(
            run_simulation(
                host_url=resolved_host_url,
                candidate_name=resolved_candidate,
                role=resolved_role,
                round_seconds=round_seconds,
                frame_origin=frame_origin,
            )
        )
    except KeyboardInterrupt:
        logger.info("\nSimulation interrupted")
        return EXIT_INTERRUPTED


def cli() -> None:
    """Command-line interface entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Walk every interview round through the avatar interview host.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with defaults
    uv run python simulate_interview.py

    # Custom host URL, shorter rounds
    uv run python simulate_interview.py --host-url http://localhost:9000 --round-seconds 0.5

Environment Variables:
    HOST_URL         Interview host URL (default: http://127.0.0.1:8770)
    CANDIDATE_NAME   Candidate name (default: Sarah Chen)
    CANDIDATE_ROLE   Role interviewed for (default: Software Engineer)
        """,
    )
    parser.add_argument(
        "--host-url",
        type=str,
        default=None,
        help=f"Interview host URL (default: {DEFAULT_HOST_URL})",
    )
    parser.add_argument(
        "--candidate",
        type=str,
        default=None,
        dest="candidate_name",
        help=f"Candidate name (default: {DEFAULT_CANDIDATE_NAME})",
    )
    parser.add_argument("--role", type=str, default=None, help=f"Role (default: {DEFAULT_ROLE})")
    parser.add_argument(
        "--round-seconds",
        type=float,
        default=DEFAULT_ROUND_SECONDS,
        help="Seconds to stay in each round",
    )
    parser.add_argument(
        "--frame-origin",
        type=str,
        default=None,
        help="Report frame connection status from this origin (e.g. https://tavus.daily.co)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    sys.exit(
        main(
            host_url=args.host_url,
            candidate_name=args.candidate_name,
            role=args.role,
            round_seconds=args.round_seconds,
            frame_origin=args.frame_origin,
        )
    )


if __name__ == "__main__":
    cli()
