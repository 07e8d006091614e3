"""Stable public API for building tooling on top of coretemp.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

from coretemp.core.control_point import ControlPointEngine
from coretemp.core.convergence import ConvergenceTracker
from coretemp.core.coordinator import SessionCoordinator, SessionStatus
from coretemp.core.decoder import decode_sample
from coretemp.core.errors import (
    CommandBusy,
    CommandTimeout,
    ConfigLoadError,
    ConfigValidationError,
    ConnectFailed,
    ControlPointUnavailable,
    CoretempError,
    DecodeError,
    DeviceDiscoveryError,
    LinkError,
    ProtocolError,
    RequiredCharacteristicMissing,
    ServiceDiscoveryFailed,
    SubscriptionFailed,
    TruncatedPayload,
    WriteFailed,
)
from coretemp.core.model import CommandOutcome, DetectedDevice, Role, Sample, SessionState, Settings
from coretemp.core.service import CoretempService, MonitorResult
from coretemp.core.session import DeviceSession
from coretemp.sinks.csv_sink import CsvReadingsSink

__all__ = [
    "CoretempError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DeviceDiscoveryError",
    "LinkError",
    "ConnectFailed",
    "ServiceDiscoveryFailed",
    "RequiredCharacteristicMissing",
    "SubscriptionFailed",
    "WriteFailed",
    "ProtocolError",
    "CommandTimeout",
    "ControlPointUnavailable",
    "DecodeError",
    "TruncatedPayload",
    "CommandBusy",
    "CommandOutcome",
    "DetectedDevice",
    "Role",
    "Sample",
    "SessionState",
    "Settings",
    "ControlPointEngine",
    "ConvergenceTracker",
    "DeviceSession",
    "SessionCoordinator",
    "SessionStatus",
    "CsvReadingsSink",
    "CoretempService",
    "MonitorResult",
    "decode_sample",
    "Client",
]


class Client:
    """Public client for interacting with coretemp core capabilities.

    A `Client` wraps settings loading, BLE scanning, and sensor monitoring
    behind a synchronous API intended for third-party tools
    (GUI/TUI/services/scripts).
    """

    def __init__(
        self,
        *,
        settings_path: Path | None = None,
        service: CoretempService | None = None,
    ) -> None:
        self._service = service or CoretempService(settings_path=settings_path)

    @property
    def settings(self) -> Settings:
        return self._service.settings

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_devices(self, *, timeout_s: float | None = None) -> list[DetectedDevice]:
        return asyncio.run(self._service.list_devices(timeout_s))

    def decode(self, payload: bytes) -> Sample:
        return decode_sample(payload)

    def monitor(
        self,
        *,
        on_event: Callable[[Any], None] | None = None,
        address: str | None = None,
        secondary: bool = False,
        csv_path: Path | None = None,
        duration_s: float | None = None,
    ) -> MonitorResult:
        return asyncio.run(
            self._service.monitor(
                on_event=on_event,
                address=address,
                secondary=secondary,
                csv_path=csv_path,
                duration_s=duration_s,
            )
        )
