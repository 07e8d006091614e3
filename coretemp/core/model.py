"""Core data models used across decoder, protocol engine, sessions, and CLI."""

from __future__ import annotations

import enum
from dataclasses import dataclass

SERVICE_UUID = "00002100-5b1e-4347-b07c-97b514dae121"
TEMPERATURE_CHAR_UUID = "00002101-5b1e-4347-b07c-97b514dae121"
CONTROL_POINT_CHAR_UUID = "00002102-5b1e-4347-b07c-97b514dae121"
CCCD_UUID = "00002902-0000-1000-8000-00805f9b34fb"


class Role(enum.Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class SessionState(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    SERVICES_DISCOVERING = "services_discovering"
    SUBSCRIBING_TEMPERATURE = "subscribing_temperature"
    SUBSCRIBING_CONTROL_POINT = "subscribing_control_point"
    READY = "ready"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.DISCONNECTED, SessionState.CLOSED)


@dataclass(frozen=True)
class Settings:
    name_prefix: str = "CORE"
    scan_timeout_s: float = 30.0
    connect_timeout_s: float = 10.0
    poll_interval_s: float = 1.0
    initial_poll_delay_s: float = 2.0
    command_timeout_s: float = 5.0
    auto_hrm_discovery: bool = True
    csv_path: str | None = None


@dataclass(frozen=True)
class DetectedDevice:
    address: str
    name: str
    service_uuids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Sample:
    """One decoded temperature notification, always in Celsius."""

    received_at: int
    flags: int
    core_c: float
    skin_c: float | None = None
    core_reserved: int | None = None
    quality: int | None = None
    heart_rate: int | None = None
    heat_strain_index: int | None = None
    fahrenheit_transmitted: bool = False


@dataclass(frozen=True)
class ControlPointCommand:
    opcode: int
    params: bytes = b""

    @property
    def correlation_key(self) -> int:
        return self.opcode

    def encode(self) -> bytes:
        return bytes((self.opcode,)) + self.params


@dataclass(frozen=True)
class ControlPointResponse:
    marker: int
    request_opcode: int
    result_code: int
    payload: bytes


@dataclass(frozen=True)
class CommandOutcome:
    opcode: int
    result_code: int
    count: int | None = None
    address: bytes | None = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0x01

    @property
    def address_str(self) -> str | None:
        if self.address is None:
            return None
        return format_address(self.address)


@dataclass
class HrmCandidate:
    index: int
    address: bytes | None = None


def format_address(address: bytes) -> str:
    return ":".join(f"{b:02X}" for b in address)
