from __future__ import annotations

import csv
import threading
from pathlib import Path

import pytest

from coretemp.core.errors import CoretempError
from coretemp.core.model import Sample
from coretemp.sinks.csv_sink import HEADER, CsvReadingsSink, format_row


def _rows(path: Path) -> list[list[str]]:
    with open(path, newline="", encoding="utf-8") as handle:
        return list(csv.reader(handle))


def test_absent_fields_become_empty_cells() -> None:
    sample = Sample(received_at=1_700_000_000_123, flags=0x05, core_c=37.125, skin_c=34.5, quality=2)
    assert format_row(sample) == ("1700000000123", "37.12", "34.50", "", "2", "", "")


def test_header_written_once_across_reopen(tmp_path: Path) -> None:
    path = tmp_path / "out" / "readings.csv"
    sample = Sample(received_at=1, flags=0x00, core_c=37.0)

    with CsvReadingsSink(path) as sink:
        sink.append(sample)
    with CsvReadingsSink(path) as sink:
        sink.append(sample)
        assert sink.rows_written == 1

    rows = _rows(path)
    assert rows[0] == list(HEADER)
    assert rows.count(list(HEADER)) == 1
    assert len(rows) == 3


def test_append_requires_open_sink(tmp_path: Path) -> None:
    sink = CsvReadingsSink(tmp_path / "readings.csv")
    with pytest.raises(CoretempError):
        sink.append(Sample(received_at=1, flags=0, core_c=37.0))
    sink.close()


def test_unwritable_location_is_reported(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("", encoding="utf-8")
    with pytest.raises(CoretempError):
        CsvReadingsSink(blocker / "readings.csv").open()


def test_concurrent_appends_keep_rows_whole(tmp_path: Path) -> None:
    path = tmp_path / "readings.csv"
    sink = CsvReadingsSink(path).open()

    def _writer(base: int) -> None:
        for i in range(200):
            sink.append(Sample(received_at=base + i, flags=0x10, core_c=37.5, heart_rate=60))

    threads = [threading.Thread(target=_writer, args=(n * 1000,)) for n in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    sink.close()

    rows = _rows(path)[1:]
    assert len(rows) == 400
    assert all(len(row) == len(HEADER) for row in rows)
    assert sink.rows_written == 400
