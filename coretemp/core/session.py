"""Per-device GATT session state machine.

A session owns one sensor connection from connect to teardown. Every input,
whether it comes from the link, a timer or a caller, is turned into an event
and processed strictly one at a time; events posted while a transition is
running are queued and handled after it completes.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from coretemp.core import control_point as cp
from coretemp.core.control_point import ControlPointEngine, opcode_name
from coretemp.core.convergence import ConvergenceTracker
from coretemp.core.decoder import decode_sample
from coretemp.core.errors import (
    CommandBusy,
    CommandTimeout,
    ConnectFailed,
    ControlPointUnavailable,
    CoretempError,
    DecodeError,
    LinkError,
    ProtocolError,
    RequiredCharacteristicMissing,
    ServiceDiscoveryFailed,
    SubscriptionFailed,
    WriteFailed,
)
from coretemp.core.events import (
    CommandCompleted,
    DiscoveryConverged,
    DiscoveryFailed,
    HrmAdded,
    LinkConnectFailed,
    LinkEstablished,
    LinkLost,
    Notification,
    SampleDecoded,
    ServicesDiscovered,
    SessionError,
    StateChanged,
    SubscriptionAck,
    TimerFired,
    WriteRejected,
)
from coretemp.core.model import (
    CONTROL_POINT_CHAR_UUID,
    TEMPERATURE_CHAR_UUID,
    CommandOutcome,
    ControlPointCommand,
    HrmCandidate,
    Role,
    SessionState,
    Settings,
    format_address,
)
from coretemp.transports.base import GattLink, LinkFactory, Scheduler, TimerHandle

LOGGER = logging.getLogger(__name__)

_COMMAND_TIMER = "command_timeout"
_POLL_TIMER = "poll"


@dataclass(frozen=True)
class _OpenRequested:
    pass


@dataclass(frozen=True)
class _CloseRequested:
    pass


@dataclass(frozen=True)
class _DiscoveryRequested:
    pass


class DeviceSession:
    def __init__(
        self,
        address: str,
        role: Role,
        *,
        link_factory: LinkFactory,
        scheduler: Scheduler,
        listener: Callable[[Any], None],
        settings: Settings | None = None,
        name: str = "",
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.address = address
        self.role = role
        self.name = name
        self.settings = settings or Settings()
        self.last_error: CoretempError | None = None
        self.temperature_subscribed = False
        self.control_point_subscribed = False

        self._link_factory = link_factory
        self._scheduler = scheduler
        self._listener = listener
        self._clock = clock
        self._state = SessionState.IDLE
        self._link: GattLink | None = None
        self._engine = ControlPointEngine()
        self._tracker = ConvergenceTracker()
        self._has_control_point = False
        self._timers: dict[str, tuple[int, TimerHandle]] = {}
        self._timer_seq = 0

        self._discovery_active = False
        self._polling = False
        self._candidate: HrmCandidate | None = None
        self._resolution_started = False

        self._inbox: deque[Any] = deque()
        self._lock = threading.RLock()
        self._draining = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def auto_discovers(self) -> bool:
        return self.role is Role.PRIMARY and self.settings.auto_hrm_discovery

    @property
    def has_control_point(self) -> bool:
        return self._has_control_point

    @property
    def outstanding_opcode(self) -> int | None:
        command = self._engine.outstanding
        return command.opcode if command else None

    @property
    def tracker(self) -> ConvergenceTracker:
        return self._tracker

    @property
    def polling(self) -> bool:
        return self._polling

    def open(self) -> None:
        self.post(_OpenRequested())

    def close(self) -> None:
        self.post(_CloseRequested())

    def start_hrm_discovery(self) -> None:
        with self._lock:
            self._require_control_point()
        self.post(_DiscoveryRequested())

    def submit(self, opcode: int, params: bytes | bytearray = b"") -> None:
        """Write a control-point command; the response arrives as an event.

        Raises CommandBusy when a command is already outstanding.
        """
        with self._lock:
            self._require_control_point()
            self._issue(opcode, bytes(params))

    def post(self, event: Any) -> None:
        with self._lock:
            self._inbox.append(event)
            if self._draining:
                return
            self._draining = True
            try:
                while self._inbox:
                    self._dispatch(self._inbox.popleft())
            finally:
                self._draining = False

    def _dispatch(self, event: Any) -> None:
        if isinstance(event, Notification):
            self._on_notification(event)
        elif isinstance(event, TimerFired):
            self._on_timer(event)
        elif isinstance(event, _OpenRequested):
            self._on_open()
        elif isinstance(event, _CloseRequested):
            if self._state is not SessionState.CLOSED:
                self._teardown(SessionState.CLOSED)
        elif isinstance(event, _DiscoveryRequested):
            self._start_discovery()
        elif isinstance(event, LinkLost):
            self._on_link_lost(event)
        elif isinstance(event, LinkEstablished):
            if self._expect(event, SessionState.CONNECTING):
                self._set_state(SessionState.SERVICES_DISCOVERING)
                self._require_link().discover_services()
        elif isinstance(event, LinkConnectFailed):
            if self._expect(event, SessionState.CONNECTING):
                self._fail(ConnectFailed(f"Connect to {self.address} failed: {event.reason}"))
        elif isinstance(event, DiscoveryFailed):
            if self._expect(event, SessionState.SERVICES_DISCOVERING):
                self._fail(
                    ServiceDiscoveryFailed(f"Service discovery on {self.address} failed: {event.reason}")
                )
        elif isinstance(event, ServicesDiscovered):
            if self._expect(event, SessionState.SERVICES_DISCOVERING):
                self._on_services(event)
        elif isinstance(event, SubscriptionAck):
            self._on_subscription(event)
        elif isinstance(event, WriteRejected):
            self._on_write_rejected(event)
        else:
            LOGGER.warning("%s: ignoring unknown event %r", self._tag, event)

    @property
    def _tag(self) -> str:
        return f"{self.role.value} {self.address}"

    def _expect(self, event: Any, state: SessionState) -> bool:
        if self._state is state:
            return True
        LOGGER.debug("%s: ignoring %s in state %s", self._tag, type(event).__name__, self._state.value)
        return False

    def _on_open(self) -> None:
        if self._state not in (SessionState.IDLE, SessionState.DISCONNECTED):
            LOGGER.warning("%s: open ignored in state %s", self._tag, self._state.value)
            return
        self.last_error = None
        self._link = self._link_factory(self.address, self.post)
        self._set_state(SessionState.CONNECTING)
        self._link.connect()

    def _on_services(self, event: ServicesDiscovered) -> None:
        found = {uuid.lower() for uuid in event.characteristics}
        if TEMPERATURE_CHAR_UUID not in found:
            self._fail(
                RequiredCharacteristicMissing(
                    f"{self.address} does not expose temperature characteristic {TEMPERATURE_CHAR_UUID}"
                )
            )
            return
        self._has_control_point = CONTROL_POINT_CHAR_UUID in found
        if not self._has_control_point:
            LOGGER.warning("%s: control-point characteristic not found", self._tag)
        self._set_state(SessionState.SUBSCRIBING_TEMPERATURE)
        self._require_link().enable_notifications(TEMPERATURE_CHAR_UUID, indicate=False)

    def _on_subscription(self, event: SubscriptionAck) -> None:
        characteristic = event.characteristic.lower()
        if characteristic == TEMPERATURE_CHAR_UUID and self._expect(
            event, SessionState.SUBSCRIBING_TEMPERATURE
        ):
            if event.ok:
                self.temperature_subscribed = True
            else:
                # Lenient: continue without temperature notifications.
                error = SubscriptionFailed(f"Temperature notifications not enabled: {event.reason}")
                LOGGER.warning("%s: %s", self._tag, error)
                self._record(error)
            if self._has_control_point:
                self._set_state(SessionState.SUBSCRIBING_CONTROL_POINT)
                self._require_link().enable_notifications(CONTROL_POINT_CHAR_UUID, indicate=True)
            else:
                self._enter_ready()
        elif characteristic == CONTROL_POINT_CHAR_UUID and self._expect(
            event, SessionState.SUBSCRIBING_CONTROL_POINT
        ):
            if not event.ok:
                self._fail(SubscriptionFailed(f"Control-point indications not enabled: {event.reason}"))
                return
            self.control_point_subscribed = True
            self._enter_ready()

    def _enter_ready(self) -> None:
        self._set_state(SessionState.READY)
        if self.auto_discovers and self._has_control_point:
            self._start_discovery()

    def _on_notification(self, event: Notification) -> None:
        if self._state.is_terminal or self._state is SessionState.IDLE:
            return
        characteristic = event.characteristic.lower()
        if characteristic == TEMPERATURE_CHAR_UUID:
            received_at = self._clock() if self._clock else None
            try:
                sample = decode_sample(event.data, received_at=received_at)
            except DecodeError as exc:
                LOGGER.warning("%s: dropping sample: %s", self._tag, exc)
                self._record(exc)
                return
            LOGGER.debug("%s: sample %s", self._tag, sample)
            self._emit(SampleDecoded(role=self.role, address=self.address, sample=sample))
        elif characteristic == CONTROL_POINT_CHAR_UUID:
            self._on_indication(event.data)
        else:
            LOGGER.debug("%s: notification on unhandled characteristic %s", self._tag, characteristic)

    def _on_indication(self, data: bytes) -> None:
        pending = self._engine.outstanding
        try:
            outcome = self._engine.on_indication(data)
        except ProtocolError as exc:
            self._cancel_timer(_COMMAND_TIMER)
            LOGGER.warning("%s: %s", self._tag, exc)
            self._record(exc)
            self._abandon_step(pending)
            return
        if outcome is None:
            return
        self._cancel_timer(_COMMAND_TIMER)
        if not outcome.succeeded:
            LOGGER.warning(
                "%s: %s failed with result code 0x%02x",
                self._tag,
                opcode_name(outcome.opcode),
                outcome.result_code,
            )
        self._emit(CommandCompleted(role=self.role, address=self.address, outcome=outcome))
        if self._discovery_active:
            self._advance_discovery(outcome)

    def _on_write_rejected(self, event: WriteRejected) -> None:
        pending = self._engine.expire()
        self._cancel_timer(_COMMAND_TIMER)
        name = opcode_name(pending.opcode) if pending else "command"
        error = WriteFailed(f"Write of {name} rejected: {event.reason}")
        LOGGER.error("%s: %s", self._tag, error)
        self._record(error)
        self._abandon_step(pending)

    def _on_timer(self, event: TimerFired) -> None:
        entry = self._timers.get(event.name)
        if entry is None or entry[0] != event.token:
            return
        del self._timers[event.name]
        if event.name == _COMMAND_TIMER:
            pending = self._engine.expire()
            if pending is None:
                return
            error = CommandTimeout(f"No response to {opcode_name(pending.opcode)}")
            LOGGER.warning("%s: %s", self._tag, error)
            self._record(error)
            self._abandon_step(pending)
        elif event.name == _POLL_TIMER:
            self._poll()

    def _abandon_step(self, pending: ControlPointCommand | None) -> None:
        if pending is None or not self._discovery_active:
            return
        if pending.opcode in (cp.OP_GET_HRM_ADDRESS, cp.OP_ADD_HRM):
            self._candidate = None
        if not self._polling and self._candidate is None:
            self._discovery_active = False

    def _on_link_lost(self, event: LinkLost) -> None:
        if self._state.is_terminal:
            return
        LOGGER.error("%s: link lost %s", self._tag, event.reason)
        self._record(LinkError(f"Link to {self.address} lost {event.reason}".strip()))
        self._teardown(SessionState.DISCONNECTED)

    def _start_discovery(self) -> None:
        if self._state is not SessionState.READY or not self._has_control_point:
            LOGGER.warning("%s: HRM discovery needs a ready control point", self._tag)
            return
        self._cancel_timer(_POLL_TIMER)
        self._polling = False
        self._tracker.reset()
        self._candidate = None
        self._resolution_started = False
        self._discovery_active = self._try_issue(cp.OP_START_HRM_SCAN, bytes((cp.SCAN_INVALIDATE_LIST,)))
        if self._discovery_active:
            LOGGER.info("%s: HRM discovery started", self._tag)

    def _advance_discovery(self, outcome: CommandOutcome) -> None:
        if outcome.opcode == cp.OP_START_HRM_SCAN:
            if not outcome.succeeded:
                self._discovery_active = False
                return
            self._tracker.reset()
            self._try_issue(cp.OP_GET_TOTAL_HRMS)
            self._polling = True
            self._arm(_POLL_TIMER, self.settings.initial_poll_delay_s)
        elif outcome.opcode == cp.OP_GET_TOTAL_HRMS and outcome.succeeded:
            self._on_total(outcome.count or 0)
        elif outcome.opcode == cp.OP_GET_HRM_ADDRESS:
            if outcome.succeeded and outcome.address is not None and self._candidate is not None:
                self._candidate.address = outcome.address
                if not self._try_issue(cp.OP_ADD_HRM, outcome.address):
                    self._candidate = None
            else:
                self._candidate = None
        elif outcome.opcode == cp.OP_ADD_HRM:
            candidate, self._candidate = self._candidate, None
            if outcome.succeeded and candidate is not None and candidate.address is not None:
                hrm = format_address(candidate.address)
                LOGGER.info("%s: HRM %s added to pairing list", self._tag, hrm)
                self._emit(HrmAdded(role=self.role, address=self.address, hrm_address=hrm))
        if not self._polling and self._candidate is None:
            self._discovery_active = False

    def _on_total(self, total: int) -> None:
        LOGGER.debug("%s: sensor reports %d HRM(s)", self._tag, total)
        if total == 1 and not self._resolution_started:
            self._resolution_started = True
            self._candidate = HrmCandidate(index=0)
            if not self._try_issue(cp.OP_GET_HRM_ADDRESS, bytes((0,))):
                self._candidate = None
        if self._polling and self._tracker.observe(total):
            self._polling = False
            self._cancel_timer(_POLL_TIMER)
            LOGGER.info("%s: HRM discovery converged, total=%d", self._tag, total)
            self._emit(DiscoveryConverged(role=self.role, address=self.address, total=total))

    def _poll(self) -> None:
        if not self._polling:
            return
        self._try_issue(cp.OP_GET_TOTAL_HRMS)
        self._arm(_POLL_TIMER, self.settings.poll_interval_s)

    def _try_issue(self, opcode: int, params: bytes = b"") -> bool:
        try:
            self._issue(opcode, params)
        except CommandBusy as exc:
            LOGGER.debug("%s: %s", self._tag, exc)
            return False
        return True

    def _issue(self, opcode: int, params: bytes = b"") -> None:
        frame = self._engine.submit(opcode, params)
        self._arm(_COMMAND_TIMER, self.settings.command_timeout_s)
        self._require_link().write(CONTROL_POINT_CHAR_UUID, frame)

    def _require_control_point(self) -> None:
        if self._state is not SessionState.READY:
            raise ControlPointUnavailable(f"Session {self.address} is {self._state.value}, not ready")
        if not self._has_control_point:
            raise ControlPointUnavailable(f"{self.address} exposes no control-point characteristic")

    def _require_link(self) -> GattLink:
        if self._link is None:
            raise LinkError(f"Session {self.address} has no link")
        return self._link

    def _arm(self, name: str, delay_s: float) -> None:
        self._cancel_timer(name)
        self._timer_seq += 1
        token = self._timer_seq
        handle = self._scheduler.call_later(
            delay_s, lambda: self.post(TimerFired(name=name, token=token))
        )
        self._timers[name] = (token, handle)

    def _cancel_timer(self, name: str) -> None:
        entry = self._timers.pop(name, None)
        if entry is not None:
            entry[1].cancel()

    def _fail(self, error: LinkError) -> None:
        LOGGER.error("%s: %s", self._tag, error)
        self._record(error)
        self._teardown(SessionState.DISCONNECTED)

    def _teardown(self, state: SessionState) -> None:
        for name in list(self._timers):
            self._cancel_timer(name)
        self._engine.expire()
        self._tracker.reset()
        self._discovery_active = False
        self._polling = False
        self._candidate = None
        self._resolution_started = False
        self.temperature_subscribed = False
        self.control_point_subscribed = False
        link, self._link = self._link, None
        if link is not None:
            link.close()
        self._set_state(state)

    def _record(self, error: CoretempError) -> None:
        self.last_error = error
        self._emit(SessionError(role=self.role, address=self.address, error=error))

    def _set_state(self, state: SessionState) -> None:
        old, self._state = self._state, state
        if old is state:
            return
        LOGGER.info("%s: %s -> %s", self._tag, old.value, state.value)
        self._emit(StateChanged(role=self.role, address=self.address, old=old, new=state))

    def _emit(self, event: Any) -> None:
        self._listener(event)
