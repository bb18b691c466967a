"""Alert records shared by the health detectors, and the stderr alert sink."""
from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, TextIO


@dataclass(frozen=True, slots=True)
class Alert:
    kind: str
    message: str
    timestamp_ms: int
    recovered: bool = False


AlertCallback = Callable[[Alert], None]


@dataclass(slots=True)
class Episode:
    active: bool = False
    start_ts_ms: int = 0

    def begin(self, ts_ms: int) -> None:
        self.active = True
        self.start_ts_ms = ts_ms

    def duration_ms(self, ts_ms: int) -> int:
        return ts_ms - self.start_ts_ms if ts_ms >= self.start_ts_ms else 0


def format_duration(ms: int) -> str:
    total_s = ms // 1000 if ms >= 0 else 0
    mins, secs = divmod(total_s, 60)
    if mins > 0:
        return f"{mins}m{secs}s"
    return f"{secs}s"


class AlertWriter:
    """
    Write alerts to a text stream, bell included.

    show_ts adds a ``[ts=<ms>]`` tag, which the log replay uses to tie each
    alert back to its input line.
    """

    def __init__(self, stream: TextIO | None = None, show_ts: bool = False):
        self.stream = stream
        self.show_ts = show_ts

    def __call__(self, alert: Alert) -> None:
        stream = self.stream or sys.stderr
        when = datetime.fromtimestamp(alert.timestamp_ms / 1000.0).strftime("%Y-%m-%d %H:%M:%S")
        tag = f"[ts={alert.timestamp_ms}] " if self.show_ts else ""
        stream.write(f"[{when}] \a[warn] {tag}{alert.message}\n")
        stream.flush()
