"""Service layer used by CLI and API frontends."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from coretemp.core.config_loader import load_settings
from coretemp.core.coordinator import SessionCoordinator, SessionStatus
from coretemp.core.device_match import accepts
from coretemp.core.events import ScanFailed, ScanTimedOut, StateChanged
from coretemp.core.model import DetectedDevice, Role, Settings
from coretemp.sinks.csv_sink import CsvReadingsSink
from coretemp.transports.base import DeviceScanner, EventSink, GattLink, LinkFactory
from coretemp.transports.ble_gatt import BleakDeviceScanner, BleakGattLink, discover_devices
from coretemp.transports.scheduler import AsyncioScheduler

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorResult:
    statuses: tuple[SessionStatus, ...]
    rows_written: int


class CoretempService:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        settings_path: Path | None = None,
        link_factory: LinkFactory | None = None,
        scanner_factory: Callable[[], DeviceScanner] | None = None,
    ) -> None:
        if settings is None:
            loaded = load_settings(settings_path)
            settings = loaded.settings
            self.load_warnings = loaded.warnings
            self.settings_sources = loaded.sources
        else:
            self.load_warnings = ()
            self.settings_sources = ()
        self.settings = settings
        self._link_factory = link_factory or self._bleak_link
        self._scanner_factory = scanner_factory or BleakDeviceScanner

    def _bleak_link(self, address: str, post: EventSink) -> GattLink:
        return BleakGattLink(address, post, timeout_s=self.settings.connect_timeout_s)

    async def list_devices(self, timeout_s: float | None = None) -> list[DetectedDevice]:
        devices = await discover_devices(timeout_s or self.settings.scan_timeout_s)
        return [d for d in devices if accepts(d, self.settings.name_prefix)]

    async def monitor(
        self,
        *,
        on_event: Callable[[Any], None] | None = None,
        address: str | None = None,
        secondary: bool = False,
        csv_path: Path | None = None,
        duration_s: float | None = None,
    ) -> MonitorResult:
        """Connect the sensor(s) and stream samples until the sessions end.

        Runs until no session is active and no scan is pending, or until
        ``duration_s`` elapses.
        """
        path = csv_path or (Path(self.settings.csv_path) if self.settings.csv_path else None)
        sink = CsvReadingsSink(path).open() if path else None
        finished = asyncio.Event()
        links: list[GattLink] = []
        scanner = self._scanner_factory()

        def _link_factory(link_address: str, post: EventSink) -> GattLink:
            link = self._link_factory(link_address, post)
            links.append(link)
            return link

        coordinator = SessionCoordinator(
            link_factory=_link_factory,
            scheduler=AsyncioScheduler(),
            scanner=scanner,
            sink=sink,
            settings=self.settings,
        )

        def _observe(event: Any) -> None:
            if on_event is not None:
                on_event(event)
            if isinstance(event, (StateChanged, ScanTimedOut, ScanFailed)) and _idle(coordinator):
                finished.set()

        coordinator.add_observer(_observe)
        try:
            if address:
                coordinator.open_session(Role.PRIMARY, address)
            else:
                coordinator.begin_scan(Role.PRIMARY)
            if secondary:
                coordinator.begin_scan(Role.SECONDARY)
            try:
                await asyncio.wait_for(finished.wait(), timeout=duration_s)
            except asyncio.TimeoutError:
                LOGGER.info("Monitoring window of %.0fs elapsed", duration_s)
        finally:
            coordinator.close_all()
            try:
                await self._wait_closed(links, scanner)
            finally:
                if sink is not None:
                    sink.close()

        statuses = tuple(coordinator.status(role) for role in Role)
        return MonitorResult(statuses=statuses, rows_written=sink.rows_written if sink else 0)

    async def _wait_closed(self, links: list[GattLink], scanner: DeviceScanner) -> None:
        waiters = [asyncio.ensure_future(link.wait_closed()) for link in links]
        waiters.append(asyncio.ensure_future(scanner.wait_closed()))
        _, pending = await asyncio.wait(waiters, timeout=self.settings.connect_timeout_s)
        if pending:
            LOGGER.warning(
                "%d BLE operation(s) still running after %.0fs",
                len(pending),
                self.settings.connect_timeout_s,
            )
            for waiter in pending:
                waiter.cancel()


def _idle(coordinator: SessionCoordinator) -> bool:
    if coordinator.scanning:
        return False
    for role in Role:
        session = coordinator.session(role)
        if session is not None and not session.state.is_terminal:
            return False
    return True
