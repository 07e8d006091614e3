"""Scan-result acceptance rules for CORE sensors."""

from __future__ import annotations

from coretemp.core.model import SERVICE_UUID, DetectedDevice


def _advertises_service(device: DetectedDevice) -> bool:
    # Scanners that already filter by service UUID may report none.
    if not device.service_uuids:
        return True
    return any(uuid.lower() == SERVICE_UUID for uuid in device.service_uuids)


def _name_prefix_match(device_name: str, prefix: str) -> bool:
    return bool(device_name) and device_name.startswith(prefix)


def accepts(device: DetectedDevice, name_prefix: str, *, exclude: tuple[str, ...] = ()) -> bool:
    if device.address.upper() in {address.upper() for address in exclude}:
        return False
    return _advertises_service(device) and _name_prefix_match(device.name, name_prefix)
