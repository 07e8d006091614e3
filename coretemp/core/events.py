"""Events flowing into and out of device sessions.

Inbound events are posted by the BLE link and timers; outbound events are
emitted by a session to its listener (normally the coordinator).
"""

from __future__ import annotations

from dataclasses import dataclass

from coretemp.core.model import CommandOutcome, Role, Sample, SessionState


@dataclass(frozen=True)
class LinkEstablished:
    pass


@dataclass(frozen=True)
class LinkConnectFailed:
    reason: str


@dataclass(frozen=True)
class LinkLost:
    reason: str = ""


@dataclass(frozen=True)
class ServicesDiscovered:
    characteristics: frozenset[str]


@dataclass(frozen=True)
class DiscoveryFailed:
    reason: str


@dataclass(frozen=True)
class SubscriptionAck:
    characteristic: str
    ok: bool
    reason: str = ""


@dataclass(frozen=True)
class Notification:
    characteristic: str
    data: bytes


@dataclass(frozen=True)
class WriteRejected:
    characteristic: str
    reason: str


@dataclass(frozen=True)
class TimerFired:
    name: str
    token: int = 0


@dataclass(frozen=True)
class StateChanged:
    role: Role
    address: str
    old: SessionState
    new: SessionState


@dataclass(frozen=True)
class SampleDecoded:
    role: Role
    address: str
    sample: Sample


@dataclass(frozen=True)
class CommandCompleted:
    role: Role
    address: str
    outcome: CommandOutcome


@dataclass(frozen=True)
class SessionError:
    role: Role
    address: str
    error: Exception


@dataclass(frozen=True)
class DiscoveryConverged:
    role: Role
    address: str
    total: int


@dataclass(frozen=True)
class HrmAdded:
    role: Role
    address: str
    hrm_address: str


@dataclass(frozen=True)
class ScanTimedOut:
    role: Role


@dataclass(frozen=True)
class ScanFailed:
    role: Role
    error: Exception
