"""Control-point (0x2102) request/response engine.

Requests are ``[opcode, *params]``. Responses arrive as indications framed
``[0x80, request_opcode, result_code, *payload]``; the echoed request opcode
is matched against the single outstanding command.
"""

from __future__ import annotations

import logging

from coretemp.core.errors import CommandBusy, ProtocolError
from coretemp.core.model import CommandOutcome, ControlPointCommand, ControlPointResponse

RESPONSE_MARKER = 0x80
RESULT_SUCCESS = 0x01

OP_ADD_HRM = 0x06
OP_START_HRM_SCAN = 0x0D
OP_GET_TOTAL_HRMS = 0x0E
OP_GET_HRM_ADDRESS = 0x10

SCAN_INVALIDATE_LIST = 0xFF

_MAX_PARAMS = 6
_ADDRESS_LEN = 6
_OPCODE_NAMES = {
    OP_ADD_HRM: "add_hrm",
    OP_START_HRM_SCAN: "start_hrm_scan",
    OP_GET_TOTAL_HRMS: "get_total_hrms",
    OP_GET_HRM_ADDRESS: "get_hrm_address",
}
LOGGER = logging.getLogger(__name__)


def opcode_name(opcode: int) -> str:
    return _OPCODE_NAMES.get(opcode, f"0x{opcode:02x}")


def parse_response(data: bytes | bytearray) -> ControlPointResponse:
    frame = bytes(data)
    if len(frame) < 3:
        raise ProtocolError(f"Control-point response too short ({len(frame)} bytes): {frame.hex()}")
    if frame[0] != RESPONSE_MARKER:
        raise ProtocolError(f"Unexpected response marker 0x{frame[0]:02x} in {frame.hex()}")
    return ControlPointResponse(
        marker=frame[0],
        request_opcode=frame[1],
        result_code=frame[2],
        payload=frame[3:],
    )


def _validate(opcode: int, params: bytes) -> None:
    if not 0 <= opcode <= 0xFF:
        raise ValueError(f"Opcode must fit in one byte, got {opcode}")
    if len(params) > _MAX_PARAMS:
        raise ValueError(f"At most {_MAX_PARAMS} parameter bytes allowed, got {len(params)}")
    if opcode == OP_ADD_HRM and len(params) != _ADDRESS_LEN:
        raise ValueError(f"add_hrm requires a {_ADDRESS_LEN}-byte address, got {len(params)}")
    if opcode == OP_GET_HRM_ADDRESS and len(params) != 1:
        raise ValueError("get_hrm_address requires a 1-byte list index")


class ControlPointEngine:
    """Tracks the single outstanding command of one session."""

    def __init__(self) -> None:
        self._outstanding: ControlPointCommand | None = None

    @property
    def outstanding(self) -> ControlPointCommand | None:
        return self._outstanding

    @property
    def busy(self) -> bool:
        return self._outstanding is not None

    def submit(self, opcode: int, params: bytes | bytearray = b"") -> bytes:
        """Record a new outstanding command and return the frame to write."""
        params = bytes(params)
        _validate(opcode, params)
        if self._outstanding is not None:
            raise CommandBusy(
                f"Cannot submit {opcode_name(opcode)} while "
                f"{opcode_name(self._outstanding.opcode)} is outstanding"
            )
        command = ControlPointCommand(opcode=opcode, params=params)
        self._outstanding = command
        frame = command.encode()
        LOGGER.debug("Control-point request %s: %s", opcode_name(opcode), frame.hex())
        return frame

    def on_indication(self, data: bytes | bytearray) -> CommandOutcome | None:
        try:
            response = parse_response(data)
        except ProtocolError:
            self._outstanding = None
            raise

        pending = self._outstanding
        if pending is None:
            LOGGER.warning(
                "Discarding %s response with no command outstanding",
                opcode_name(response.request_opcode),
            )
            return None
        if response.request_opcode != pending.correlation_key:
            LOGGER.warning(
                "Discarding %s response while waiting for %s",
                opcode_name(response.request_opcode),
                opcode_name(pending.opcode),
            )
            return None

        self._outstanding = None
        LOGGER.debug(
            "Control-point response %s result=0x%02x payload=%s",
            opcode_name(response.request_opcode),
            response.result_code,
            response.payload.hex(),
        )
        if response.result_code != RESULT_SUCCESS:
            return CommandOutcome(opcode=response.request_opcode, result_code=response.result_code)
        return _success_outcome(response)

    def expire(self) -> ControlPointCommand | None:
        """Drop the outstanding command, e.g. on response timeout or link loss."""
        pending, self._outstanding = self._outstanding, None
        return pending


def _success_outcome(response: ControlPointResponse) -> CommandOutcome:
    opcode = response.request_opcode
    if opcode == OP_GET_TOTAL_HRMS:
        if len(response.payload) < 1:
            raise ProtocolError("get_total_hrms response is missing the count byte")
        return CommandOutcome(opcode=opcode, result_code=response.result_code, count=response.payload[0])
    if opcode == OP_GET_HRM_ADDRESS:
        if len(response.payload) < _ADDRESS_LEN:
            raise ProtocolError(
                f"get_hrm_address response carries {len(response.payload)} bytes, "
                f"need {_ADDRESS_LEN}"
            )
        return CommandOutcome(
            opcode=opcode,
            result_code=response.result_code,
            address=response.payload[:_ADDRESS_LEN],
        )
    return CommandOutcome(opcode=opcode, result_code=response.result_code)
