"""
Connection Health Monitor.

Holds the connection status / quality snapshot for one orchestrator and
broadcasts every change to subscribers synchronously, in registration
order. update() is the only mutation entry point.

Subscribers are tracked as explicit Subscription handles, so removal
(even from inside a callback) never shifts the in-progress notification
pass. Updates issued from inside a callback are queued and delivered
after the current pass, keeping emission order identical for everyone.

Example usage:
    monitor = ConnectionHealthMonitor()
    subscription = monitor.subscribe(lambda status: print(status.status))
    monitor.update(status=ConnectionState.CONNECTING)
    await monitor.probe_quality(HttpLatencyProbe("https://interview.example.com"))
    subscription.unsubscribe()
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import httpx
from pydantic import ValidationError

from .models import ConnectionQuality, ConnectionState, ConnectionStatus


__all__ = [
    "ConnectionHealthMonitor",
    "Subscription",
    "HttpLatencyProbe",
    "LatencyProbe",
    "DeviceProbe",
    "MediaHandle",
    "DeviceAccessError",
    "DeviceErrorKind",
    "DevicePermissions",
    "classify_latency",
    "DEVICE_ERROR_MESSAGES",
]


logger = logging.getLogger(__name__)


StatusCallback = Callable[[ConnectionStatus], None]


def classify_latency(latency_ms: float) -> ConnectionQuality:
    """
    Map a round-trip latency to a quality tier.

    <200ms excellent, <500ms good, <1000ms fair, otherwise poor.
    """
    if latency_ms < 200:
        return ConnectionQuality.EXCELLENT
    if latency_ms < 500:
        return ConnectionQuality.GOOD
    if latency_ms < 1000:
        return ConnectionQuality.FAIR
    return ConnectionQuality.POOR


# =============================================================================
# Probes
# =============================================================================


class LatencyProbe(Protocol):
    """One-shot round-trip measurement."""

    async def measure(self) -> float:
        """Return the round-trip latency in milliseconds."""


class HttpLatencyProbe:
    """Times a HEAD request to the host origin."""

    def __init__(
        self,
        origin_url: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.origin_url = origin_url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def measure(self) -> float:
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self._transport,
        ) as client:
            started = time.perf_counter()
            await client.head(self.origin_url)
            return (time.perf_counter() - started) * 1000.0


class DeviceErrorKind(str, Enum):
    """Why camera/microphone access failed."""

    DENIED = "denied"
    NOT_FOUND = "not_found"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


DEVICE_ERROR_MESSAGES: dict[DeviceErrorKind, str] = {
    DeviceErrorKind.DENIED: "Camera and microphone access denied. Please allow permissions.",
    DeviceErrorKind.NOT_FOUND: "No camera or microphone found.",
    DeviceErrorKind.UNSUPPORTED: "Camera and microphone not supported in this browser.",
    DeviceErrorKind.UNKNOWN: "Failed to access camera and microphone",
}


class DeviceAccessError(Exception):
    """Raised by a DeviceProbe when media cannot be acquired."""

    def __init__(self, kind: DeviceErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(detail or DEVICE_ERROR_MESSAGES[kind])


class MediaHandle(Protocol):
    """Acquired camera+microphone resources."""

    def release(self) -> None:
        """Stop all acquired tracks."""


class DeviceProbe(Protocol):
    """Requests camera+microphone access."""

    async def acquire(self) -> MediaHandle:
        """Acquire media or raise DeviceAccessError."""


@dataclass(frozen=True)
class DevicePermissions:
    """Outcome of a device permission check."""

    camera: bool
    microphone: bool
    error: Optional[str] = None
    error_kind: Optional[DeviceErrorKind] = None


# =============================================================================
# Monitor
# =============================================================================


class Subscription:
    """Handle returned by ConnectionHealthMonitor.subscribe()."""

    def __init__(self, monitor: "ConnectionHealthMonitor", callback: StatusCallback) -> None:
        self._monitor = monitor
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        self._monitor.unsubscribe(self)


class ConnectionHealthMonitor:
    """
    Single-writer connection status broadcaster.

    Not thread-safe: owned by one orchestrator on one event loop.
    """

    def __init__(self, initial: Optional[ConnectionStatus] = None) -> None:
        self._status = initial or ConnectionStatus()
        self._subscriptions: list[Subscription] = []
        self._pending: deque[ConnectionStatus] = deque()
        self._notifying = False

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: StatusCallback) -> Subscription:
        """Register a callback. It is not called with the current status."""
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        logger.debug("New status subscriber. Total: %d", len(self._subscriptions))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscriber. Safe to call more than once or from a callback."""
        subscription.active = False
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        logger.debug("Status subscriber removed. Total: %d", len(self._subscriptions))

    def update(self, **changes: Any) -> ConnectionStatus:
        """
        Merge a partial update into the current status and notify subscribers.

        Args:
            **changes: Any ConnectionStatus fields.

        Returns:
            The merged status.

        Raises:
            ValueError: If the merged status is invalid.
        """
        try:
            merged = ConnectionStatus.model_validate({**self._status.model_dump(), **changes})
        except ValidationError as e:
            raise ValueError(f"Invalid connection status update {changes}: {e}") from e

        self._status = merged
        self._pending.append(merged)
        if not self._notifying:
            self._drain()
        return merged

    def _drain(self) -> None:
        self._notifying = True
        try:
            while self._pending:
                snapshot = self._pending.popleft()
                for subscription in tuple(self._subscriptions):
                    if not subscription.active:
                        continue
                    try:
                        subscription.callback(snapshot)
                    except Exception as e:
                        logger.warning("Status subscriber raised: %s", e, exc_info=True)
        finally:
            self._notifying = False

    async def probe_quality(self, probe: LatencyProbe) -> ConnectionQuality:
        """Run a latency probe and record quality (poor on any probe failure)."""
        try:
            latency_ms = await probe.measure()
        except Exception as e:
            logger.error("Connection quality test failed: %s", e)
            self.update(quality=ConnectionQuality.POOR)
            return ConnectionQuality.POOR

        quality = classify_latency(latency_ms)
        self.update(quality=quality, latency_ms=max(latency_ms, 0.0))
        logger.info("Connection quality: %s (%.0f ms)", quality.value, latency_ms)
        return quality

    async def check_device_permissions(self, probe: DeviceProbe) -> DevicePermissions:
        """
        Classify camera/microphone availability.

        Acquired media is released before returning.
        """
        try:
            handle = await probe.acquire()
        except DeviceAccessError as e:
            permissions = DevicePermissions(
                camera=False,
                microphone=False,
                error=DEVICE_ERROR_MESSAGES[e.kind],
                error_kind=e.kind,
            )
            logger.warning("Device permission check failed: %s (%s)", e.kind.value, e)
        except Exception as e:
            permissions = DevicePermissions(
                camera=False,
                microphone=False,
                error=DEVICE_ERROR_MESSAGES[DeviceErrorKind.UNKNOWN],
                error_kind=DeviceErrorKind.UNKNOWN,
            )
            logger.warning("Device permission check failed: %s", e)
        else:
            handle.release()
            permissions = DevicePermissions(camera=True, microphone=True)

        self.apply_device_permissions(permissions)
        return permissions

    def apply_device_permissions(self, permissions: DevicePermissions) -> ConnectionStatus:
        """Record a device check outcome (also used for browser-side checks)."""
        return self.update(camera=permissions.camera, microphone=permissions.microphone)
