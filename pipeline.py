from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict

from health import HealthAnalyzer
from hrm import Sample, decode_hrm

logger = logging.getLogger(__name__)

LineSink = Callable[[str], None]


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class NotificationPipeline:
    """
    Turns heart-rate notifications into canonical output lines.

    A line identical to the previous one (timestamp included) is counted in
    `suppressed` and not re-emitted or re-analyzed.
    """

    def __init__(
        self,
        sink: LineSink,
        analyzer: HealthAnalyzer | None = None,
        clock_ms: Callable[[], int] = now_ms,
    ):
        self.sink = sink
        self.analyzer = analyzer
        self.clock_ms = clock_ms
        self.last_line: str | None = None
        self.suppressed = 0

    def handle_properties(self, changed: Dict[str, Any]) -> None:
        value = changed.get("Value")
        if not isinstance(value, (bytes, bytearray)):
            return
        self.process(bytes(value), self.clock_ms())

    def process(self, data: bytes, timestamp_ms: int) -> Sample | None:
        bpm, rr_list = decode_hrm(data)
        if data:
            logger.debug(
                "HRM notify: flags=0x%02x bpm=%s rr_count=%d raw=[%s]",
                data[0], bpm, len(rr_list), data.hex(" "),
            )
        else:
            logger.debug("HRM notify: empty payload")

        sample = Sample(timestamp_ms=timestamp_ms, bpm=bpm, rr_intervals_ms=tuple(rr_list))
        line = sample.to_line()
        if line == self.last_line:
            self.suppressed += 1
            logger.debug("duplicate line suppressed (%d): %s", self.suppressed, line)
            return None

        if self.analyzer is not None:
            self.analyzer.process(sample)
        self.sink(line)
        self.last_line = line
        return sample
