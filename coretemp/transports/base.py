"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from coretemp.core.errors import DeviceDiscoveryError
from coretemp.core.model import DetectedDevice

EventSink = Callable[[Any], None]


class GattLink(Protocol):
    """Non-blocking GATT operations; results come back as posted events."""

    def connect(self) -> None:
        """Start connecting; posts LinkEstablished or LinkConnectFailed."""

    def discover_services(self) -> None:
        """Posts ServicesDiscovered or DiscoveryFailed."""

    def enable_notifications(self, characteristic: str, *, indicate: bool) -> None:
        """Write the CCCD; posts SubscriptionAck."""

    def write(self, characteristic: str, payload: bytes) -> None:
        """Write with response; posts WriteRejected on failure."""

    def close(self) -> None:
        """Release the connection. Must be safe to call more than once."""

    async def wait_closed(self) -> None:
        """Wait for pending operations, including the disconnect, to finish."""


LinkFactory = Callable[[str, EventSink], GattLink]


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class DeviceScanner(Protocol):
    def start(
        self,
        on_device: Callable[[DetectedDevice], None],
        on_error: Callable[[DeviceDiscoveryError], None] | None = None,
    ) -> None:
        """Report matching advertisements; a backend failure goes to ``on_error``."""

    def stop(self) -> None:
        ...

    async def wait_closed(self) -> None:
        ...
