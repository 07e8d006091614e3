from __future__ import annotations

from fakes import FakeScanner, LinkRecorder, bring_up

from coretemp.api import Client, CoretempService, Role, SessionState, Settings
from coretemp.core.errors import DeviceDiscoveryError
from coretemp.core.events import LinkLost, Notification, SampleDecoded, ScanFailed
from coretemp.core.model import TEMPERATURE_CHAR_UUID, DetectedDevice


def test_public_client_decode() -> None:
    client = Client(service=CoretempService(settings=Settings()))
    sample = client.decode(bytes([0x11, 0x80, 0x0E, 0x7F, 0x0D, 0x48]))
    assert round(sample.core_c, 2) == 37.12
    assert round(sample.skin_c, 2) == 34.55
    assert sample.heart_rate == 72


def test_public_client_list_devices_filters_by_prefix(monkeypatch) -> None:
    client = Client(service=CoretempService(settings=Settings()))

    async def _discover(timeout_s):
        return [
            DetectedDevice(address="C0:00:00:00:00:01", name="CORE 0001"),
            DetectedDevice(address="C0:00:00:00:00:02", name="Polar H10"),
        ]

    monkeypatch.setattr("coretemp.core.service.discover_devices", _discover)
    devices = client.list_devices(timeout_s=1.0)
    assert [d.name for d in devices] == ["CORE 0001"]


def test_public_client_monitor_streams_until_disconnect(tmp_path) -> None:
    links = LinkRecorder()
    seen: list = []

    def _on_event(event) -> None:
        seen.append(event)
        if isinstance(event, SampleDecoded):
            links.links[0].post(LinkLost())

    def _link_factory(address, post):
        link = links(address, post)
        bring_up(post)
        post(Notification(TEMPERATURE_CHAR_UUID, bytes([0x00, 0x80, 0x0E])))
        return link

    service = CoretempService(
        settings=Settings(auto_hrm_discovery=False),
        link_factory=_link_factory,
        scanner_factory=FakeScanner,
    )
    client = Client(service=service)

    result = client.monitor(
        on_event=_on_event,
        address="C0:00:00:00:00:01",
        csv_path=tmp_path / "readings.csv",
        duration_s=5.0,
    )

    primary = result.statuses[0]
    assert primary.role is Role.PRIMARY
    assert primary.state is SessionState.CLOSED
    assert result.rows_written == 1
    assert any(isinstance(e, SampleDecoded) for e in seen)
    assert (tmp_path / "readings.csv").read_text(encoding="utf-8").startswith("time,core_temp")
    assert links.links[0].waited


def test_public_client_monitor_stops_when_scanner_fails() -> None:
    class PoweredOffScanner(FakeScanner):
        def start(self, on_device, on_error=None) -> None:
            super().start(on_device, on_error)
            on_error(DeviceDiscoveryError("BLE scan failed: adapter is powered off"))

    seen: list = []
    service = CoretempService(settings=Settings(), link_factory=LinkRecorder(), scanner_factory=PoweredOffScanner)

    result = Client(service=service).monitor(on_event=seen.append, duration_s=30.0)

    assert [type(e) for e in seen] == [ScanFailed]
    assert all(status.address is None for status in result.statuses)
