"""CSV readings sink: one row per decoded sample."""

from __future__ import annotations

import csv
import logging
import threading
from pathlib import Path
from typing import Protocol, TextIO

from coretemp.core.errors import CoretempError
from coretemp.core.model import Sample

HEADER = ("time", "core_temp", "skin_temp", "core_res", "quality", "hr", "hsi")
LOGGER = logging.getLogger(__name__)


class ReadingsSink(Protocol):
    def append(self, sample: Sample) -> None:
        """Persist one decoded sample."""


def _decimal(value: float | None) -> str:
    return "" if value is None else f"{value:.2f}"


def _integer(value: int | None) -> str:
    return "" if value is None else str(value)


def format_row(sample: Sample) -> tuple[str, ...]:
    return (
        str(sample.received_at),
        _decimal(sample.core_c),
        _decimal(sample.skin_c),
        _integer(sample.core_reserved),
        _integer(sample.quality),
        _integer(sample.heart_rate),
        _integer(sample.heat_strain_index),
    )


class CsvReadingsSink:
    """Appends samples to a CSV file, writing the header only for a new file.

    Safe for concurrent appends from both sensor sessions.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.rows_written = 0
        self._handle: TextIO | None = None
        self._writer = None
        self._lock = threading.Lock()

    def open(self) -> "CsvReadingsSink":
        with self._lock:
            if self._handle is not None:
                return self
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                is_new = not self.path.exists() or self.path.stat().st_size == 0
                self._handle = open(self.path, "a", newline="", encoding="utf-8")
            except OSError as exc:
                raise CoretempError(f"Could not open readings file {self.path}: {exc}") from exc
            self._writer = csv.writer(self._handle)
            if is_new:
                self._writer.writerow(HEADER)
                self._handle.flush()
            LOGGER.info("Logging readings to %s", self.path)
        return self

    def append(self, sample: Sample) -> None:
        with self._lock:
            if self._handle is None or self._writer is None:
                raise CoretempError(f"Readings file {self.path} is not open")
            self._writer.writerow(format_row(sample))
            self._handle.flush()
            self.rows_written += 1

    def close(self) -> None:
        with self._lock:
            if self._handle is None:
                return
            self._handle.close()
            self._handle = None
            self._writer = None
            LOGGER.info("Closed readings file %s after %d rows", self.path, self.rows_written)

    def __enter__(self) -> "CsvReadingsSink":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()
