"""Domain-specific errors for coretemp."""


class CoretempError(Exception):
    """Base error for coretemp."""


class ConfigValidationError(CoretempError):
    """Raised when a settings file does not conform to schema or semantics."""


class ConfigLoadError(CoretempError):
    """Raised when reading settings sources fails."""


class DeviceDiscoveryError(CoretempError):
    """Raised when the BLE scanner backend fails."""


class LinkError(CoretempError):
    """Base error for connect, discover and subscribe failures."""


class ConnectFailed(LinkError):
    """Raised when the GATT connection cannot be established."""


class ServiceDiscoveryFailed(LinkError):
    """Raised when GATT service discovery fails."""


class RequiredCharacteristicMissing(LinkError):
    """Raised when the temperature characteristic is not exposed."""


class SubscriptionFailed(LinkError):
    """Raised when enabling notifications or indications fails."""


class WriteFailed(LinkError):
    """Raised when a control-point write is rejected by the link."""


class ProtocolError(CoretempError):
    """Raised on malformed or unexpected control-point responses."""


class CommandTimeout(ProtocolError):
    """Raised when no response arrives for the outstanding command."""


class ControlPointUnavailable(ProtocolError):
    """Raised when the session has no usable control-point characteristic."""


class DecodeError(CoretempError):
    """Raised when a temperature notification cannot be decoded."""


class TruncatedPayload(DecodeError):
    """Raised when a payload is shorter than its flags byte declares."""


class CommandBusy(CoretempError):
    """Raised when a command is submitted while another is outstanding."""
