from __future__ import annotations

from collections.abc import Callable
from typing import Any

from coretemp.core.events import LinkEstablished, ServicesDiscovered, SubscriptionAck
from coretemp.core.model import (
    CONTROL_POINT_CHAR_UUID,
    TEMPERATURE_CHAR_UUID,
    DetectedDevice,
    Role,
    Settings,
)
from coretemp.core.session import DeviceSession


class FakeTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay_s, callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = sorted((t for t in self.pending() if t.due <= target), key=lambda t: t.due)
            if not due:
                break
            timer = due[0]
            self.now = timer.due
            timer.fired = True
            timer.callback()
        self.now = target


class FakeLink:
    def __init__(self, address: str, post: Callable[[Any], None]) -> None:
        self.address = address
        self.post = post
        self.calls: list[Any] = []
        self.writes: list[bytes] = []
        self.closed = False
        self.waited = False

    def connect(self) -> None:
        self.calls.append("connect")

    def discover_services(self) -> None:
        self.calls.append("discover")

    def enable_notifications(self, characteristic: str, *, indicate: bool) -> None:
        self.calls.append(("subscribe", characteristic, indicate))

    def write(self, characteristic: str, payload: bytes) -> None:
        assert characteristic == CONTROL_POINT_CHAR_UUID
        self.writes.append(bytes(payload))

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        self.waited = True


class LinkRecorder:
    def __init__(self) -> None:
        self.links: list[FakeLink] = []

    def __call__(self, address: str, post: Callable[[Any], None]) -> FakeLink:
        link = FakeLink(address, post)
        self.links.append(link)
        return link

    def for_address(self, address: str) -> FakeLink:
        return next(link for link in reversed(self.links) if link.address == address)


class FakeScanner:
    def __init__(self) -> None:
        self.on_device: Callable[[DetectedDevice], None] | None = None
        self.on_error: Callable[[Exception], None] | None = None
        self.started = 0
        self.stopped = 0

    def start(
        self,
        on_device: Callable[[DetectedDevice], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self.on_device = on_device
        self.on_error = on_error
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    async def wait_closed(self) -> None:
        pass


class FakeSink:
    def __init__(self) -> None:
        self.samples: list[Any] = []

    def append(self, sample: Any) -> None:
        self.samples.append(sample)


def bring_up(link_post: Callable[[Any], None], *, control_point: bool = True) -> None:
    characteristics = {TEMPERATURE_CHAR_UUID}
    if control_point:
        characteristics.add(CONTROL_POINT_CHAR_UUID)
    link_post(LinkEstablished())
    link_post(ServicesDiscovered(frozenset(characteristics)))
    link_post(SubscriptionAck(TEMPERATURE_CHAR_UUID, ok=True))
    if control_point:
        link_post(SubscriptionAck(CONTROL_POINT_CHAR_UUID, ok=True))


class Harness:
    def __init__(
        self,
        role: Role = Role.PRIMARY,
        *,
        settings: Settings | None = None,
        address: str = "AA:BB:CC:00:00:01",
        listener: Callable[[Any], None] | None = None,
    ) -> None:
        self.scheduler = FakeScheduler()
        self._extra_listener = listener
        self.links = LinkRecorder()
        self.events: list[Any] = []
        self.session = DeviceSession(
            address,
            role,
            link_factory=self.links,
            scheduler=self.scheduler,
            listener=self._record,
            settings=settings,
            name="CORE 1234",
            clock=lambda: 1_700_000_000_000,
        )

    def _record(self, event: Any) -> None:
        self.events.append(event)
        if self._extra_listener is not None:
            self._extra_listener(event)

    @property
    def link(self) -> FakeLink:
        return self.links.links[-1]

    def ready(self, *, control_point: bool = True) -> "Harness":
        self.session.open()
        bring_up(self.session.post, control_point=control_point)
        return self

    def of_type(self, event_type: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]
