"""Coordinator owning the primary and optional secondary sensor sessions."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from coretemp.core.device_match import accepts
from coretemp.core.errors import CoretempError, DeviceDiscoveryError
from coretemp.core.events import SampleDecoded, ScanFailed, ScanTimedOut
from coretemp.core.model import DetectedDevice, Role, SessionState, Settings
from coretemp.core.session import DeviceSession
from coretemp.sinks.csv_sink import ReadingsSink
from coretemp.transports.base import DeviceScanner, LinkFactory, Scheduler, TimerHandle

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionStatus:
    role: Role
    state: SessionState
    address: str | None
    last_error: CoretempError | None


class SessionCoordinator:
    def __init__(
        self,
        *,
        link_factory: LinkFactory,
        scheduler: Scheduler,
        scanner: DeviceScanner | None = None,
        sink: ReadingsSink | None = None,
        settings: Settings | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._link_factory = link_factory
        self._scheduler = scheduler
        self._scanner = scanner
        self._scanner_running = False
        self._sink = sink
        self._clock = clock
        self._sessions: dict[Role, DeviceSession] = {}
        self._scans: dict[Role, TimerHandle] = {}
        self._observers: list[Callable[[Any], None]] = []
        self._sink_lock = threading.Lock()

    def add_observer(self, observer: Callable[[Any], None]) -> None:
        self._observers.append(observer)

    def session(self, role: Role) -> DeviceSession | None:
        return self._sessions.get(role)

    @property
    def scanning(self) -> tuple[Role, ...]:
        return tuple(role for role in Role if role in self._scans)

    def status(self, role: Role) -> SessionStatus:
        session = self._sessions.get(role)
        if session is None:
            state = SessionState.SCANNING if role in self._scans else SessionState.IDLE
            return SessionStatus(role=role, state=state, address=None, last_error=None)
        return SessionStatus(
            role=role,
            state=session.state,
            address=session.address,
            last_error=session.last_error,
        )

    def begin_scan(self, role: Role) -> None:
        if self._active(role) is not None:
            raise CoretempError(f"A {role.value} sensor session is already active")
        self._cancel_scan_timer(role)
        self._scans[role] = self._scheduler.call_later(
            self.settings.scan_timeout_s, lambda: self._on_scan_timeout(role)
        )
        LOGGER.info("Scanning for %s sensor (timeout %.0fs)", role.value, self.settings.scan_timeout_s)
        if self._scanner is not None and not self._scanner_running:
            self._scanner_running = True
            self._scanner.start(self.on_scan_result, self._on_scanner_error)

    def cancel_scan(self, role: Role) -> None:
        self._cancel_scan_timer(role)
        self._stop_scanner_if_idle()

    def on_scan_result(self, device: DetectedDevice) -> Role | None:
        LOGGER.debug("Discovered device %s (%s)", device.name, device.address)
        for role in self.scanning:
            exclude = tuple(
                s.address for r, s in self._sessions.items() if r is not role and not s.state.is_terminal
            )
            if not accepts(device, self.settings.name_prefix, exclude=exclude):
                continue
            self.cancel_scan(role)
            self.open_session(role, device.address, name=device.name)
            return role
        return None

    def open_session(self, role: Role, address: str, *, name: str = "") -> DeviceSession:
        if self._active(role) is not None:
            raise CoretempError(f"A {role.value} sensor session is already active")
        for other in self._sessions.values():
            if other.address.upper() == address.upper() and not other.state.is_terminal:
                raise CoretempError(f"{address} already has an open {other.role.value} session")
        previous = self._sessions.get(role)
        if previous is not None:
            previous.close()
        session = DeviceSession(
            address,
            role,
            link_factory=self._link_factory,
            scheduler=self._scheduler,
            listener=self._on_session_event,
            settings=self.settings,
            name=name,
            clock=self._clock,
        )
        self._sessions[role] = session
        LOGGER.info("Connecting %s sensor %s (%s)", role.value, name or "<unnamed>", address)
        session.open()
        return session

    def close(self, role: Role) -> None:
        self.cancel_scan(role)
        session = self._sessions.get(role)
        if session is not None:
            session.close()

    def close_all(self) -> None:
        for role in Role:
            self.close(role)

    def _active(self, role: Role) -> DeviceSession | None:
        session = self._sessions.get(role)
        if session is None or session.state.is_terminal:
            return None
        return session

    def _on_session_event(self, event: Any) -> None:
        if isinstance(event, SampleDecoded) and self._sink is not None:
            with self._sink_lock:
                try:
                    self._sink.append(event.sample)
                except (CoretempError, OSError) as exc:
                    LOGGER.error("Could not record sample from %s: %s", event.address, exc)
        self._notify(event)

    def _on_scan_timeout(self, role: Role) -> None:
        if self._scans.pop(role, None) is None:
            return
        LOGGER.warning("No %s sensor found within %.0fs", role.value, self.settings.scan_timeout_s)
        self._stop_scanner_if_idle()
        self._notify(ScanTimedOut(role=role))

    def _on_scanner_error(self, error: DeviceDiscoveryError) -> None:
        LOGGER.error("%s", error)
        self._scanner_running = False
        for role in self.scanning:
            self._cancel_scan_timer(role)
            self._notify(ScanFailed(role=role, error=error))

    def _cancel_scan_timer(self, role: Role) -> None:
        handle = self._scans.pop(role, None)
        if handle is not None:
            handle.cancel()

    def _stop_scanner_if_idle(self) -> None:
        if self._scanner is not None and self._scanner_running and not self._scans:
            self._scanner_running = False
            self._scanner.stop()

    def _notify(self, event: Any) -> None:
        for observer in self._observers:
            observer(event)
