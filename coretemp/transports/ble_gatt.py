"""BLE GATT transport implementation on top of bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from coretemp.core.errors import DeviceDiscoveryError
from coretemp.core.events import (
    DiscoveryFailed,
    LinkConnectFailed,
    LinkEstablished,
    LinkLost,
    Notification,
    ServicesDiscovered,
    SubscriptionAck,
    WriteRejected,
)
from coretemp.core.model import SERVICE_UUID, DetectedDevice
from coretemp.transports.base import EventSink

LOGGER = logging.getLogger(__name__)

_LINK_ERRORS = (BleakError, asyncio.TimeoutError, OSError)


class _TaskGroup:
    def __init__(self, loop: asyncio.AbstractEventLoop | None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._done)

    async def join(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while True:
            pending = {task for task in self._tasks if not task.done()}
            if not pending:
                return
            await asyncio.wait(pending)

    def _done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("BLE task failed: %s", task.exception())


class BleakGattLink:
    """GattLink backed by a BleakClient; every result is posted as an event."""

    def __init__(
        self,
        address: str,
        post: EventSink,
        *,
        timeout_s: float = 10.0,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.address = address
        self._post = post
        self._timeout_s = timeout_s
        self._client: BleakClient | None = None
        self._closing = False
        self._tasks = _TaskGroup(loop)

    def connect(self) -> None:
        self._tasks.spawn(self._connect())

    def discover_services(self) -> None:
        if self._client is None:
            self._post(DiscoveryFailed("not connected"))
            return
        service = self._client.services.get_service(SERVICE_UUID)
        if service is None:
            self._post(DiscoveryFailed(f"service {SERVICE_UUID} not found"))
            return
        characteristics = frozenset(char.uuid.lower() for char in service.characteristics)
        LOGGER.debug("%s: characteristics %s", self.address, sorted(characteristics))
        self._post(ServicesDiscovered(characteristics))

    def enable_notifications(self, characteristic: str, *, indicate: bool) -> None:
        self._tasks.spawn(self._subscribe(characteristic, indicate))

    def write(self, characteristic: str, payload: bytes) -> None:
        self._tasks.spawn(self._write(characteristic, payload))

    def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        client, self._client = self._client, None
        if client is not None:
            self._tasks.spawn(self._disconnect(client))

    async def wait_closed(self) -> None:
        await self._tasks.join()

    async def _connect(self) -> None:
        client = BleakClient(
            self.address,
            disconnected_callback=self._on_disconnect,
            timeout=self._timeout_s,
        )
        try:
            await client.connect()
        except _LINK_ERRORS as exc:
            self._post(LinkConnectFailed(str(exc) or type(exc).__name__))
            return
        if self._closing:
            await self._disconnect(client)
            return
        self._client = client
        self._post(LinkEstablished())

    async def _subscribe(self, characteristic: str, indicate: bool) -> None:
        client = self._client
        if client is None:
            self._post(SubscriptionAck(characteristic, ok=False, reason="not connected"))
            return

        def _handler(_: Any, data: bytearray) -> None:
            self._post(Notification(characteristic, bytes(data)))

        LOGGER.debug(
            "%s: enabling %s on %s",
            self.address,
            "indications" if indicate else "notifications",
            characteristic,
        )
        try:
            await client.start_notify(characteristic, _handler)
        except _LINK_ERRORS as exc:
            self._post(SubscriptionAck(characteristic, ok=False, reason=str(exc)))
            return
        self._post(SubscriptionAck(characteristic, ok=True))

    async def _write(self, characteristic: str, payload: bytes) -> None:
        client = self._client
        if client is None:
            self._post(WriteRejected(characteristic, "not connected"))
            return
        try:
            await client.write_gatt_char(characteristic, payload, response=True)
        except _LINK_ERRORS as exc:
            self._post(WriteRejected(characteristic, str(exc)))

    async def _disconnect(self, client: BleakClient) -> None:
        try:
            await client.disconnect()
        except _LINK_ERRORS as exc:
            LOGGER.warning("%s: disconnect failed: %s", self.address, exc)

    def _on_disconnect(self, _: BleakClient) -> None:
        if not self._closing:
            self._post(LinkLost("peripheral disconnected"))


def _to_device(device: BLEDevice, adv: AdvertisementData) -> DetectedDevice:
    return DetectedDevice(
        address=device.address,
        name=adv.local_name or device.name or "",
        service_uuids=tuple(uuid.lower() for uuid in adv.service_uuids),
    )


class BleakDeviceScanner:
    """DeviceScanner reporting every advertisement carrying the CORE service."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._scanner: BleakScanner | None = None
        self._tasks = _TaskGroup(loop)

    def start(
        self,
        on_device: Callable[[DetectedDevice], None],
        on_error: Callable[[DeviceDiscoveryError], None] | None = None,
    ) -> None:
        def _detected(device: BLEDevice, adv: AdvertisementData) -> None:
            on_device(_to_device(device, adv))

        self._scanner = BleakScanner(detection_callback=_detected, service_uuids=[SERVICE_UUID])
        self._tasks.spawn(self._start(self._scanner, on_error))

    async def _start(
        self,
        scanner: BleakScanner,
        on_error: Callable[[DeviceDiscoveryError], None] | None,
    ) -> None:
        try:
            await scanner.start()
        except _LINK_ERRORS as exc:
            if self._scanner is scanner:
                self._scanner = None
            error = DeviceDiscoveryError(f"BLE scan failed: {exc}")
            if on_error is None:
                raise error from exc
            on_error(error)

    def stop(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is not None:
            self._tasks.spawn(scanner.stop())

    async def wait_closed(self) -> None:
        await self._tasks.join()


async def discover_devices(timeout_s: float) -> list[DetectedDevice]:
    try:
        found = await BleakScanner.discover(
            timeout=timeout_s,
            return_adv=True,
            service_uuids=[SERVICE_UUID],
        )
    except _LINK_ERRORS as exc:
        raise DeviceDiscoveryError(f"BLE scan failed: {exc}") from exc
    return [_to_device(device, adv) for device, adv in found.values()]
