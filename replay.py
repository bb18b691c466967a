"""Feed a recorded ``ts,bpm[,rr...]`` log through the health analyzer."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator

from alerts import AlertCallback, AlertWriter
from health import HealthAnalyzer
from hrm import Sample, parse_line

logger = logging.getLogger(__name__)


def iter_samples(lines: Iterable[str]) -> Iterator[Sample]:
    for line in lines:
        sample = parse_line(line)
        if sample is not None:
            yield sample


def replay(lines: Iterable[str], analyzer: HealthAnalyzer) -> int:
    count = 0
    for sample in iter_samples(lines):
        analyzer.process(sample)
        count += 1
    return count


def analyze_log(path: str | Path, on_alert: AlertCallback | None = None, recovery_min_ms: int = 1000) -> int:
    """Replay one log file; returns a process exit status."""
    log_path = Path(path).expanduser()
    analyzer = HealthAnalyzer(on_alert=on_alert or AlertWriter(show_ts=True), recovery_min_ms=recovery_min_ms)
    try:
        with log_path.open("r", encoding="utf-8", errors="replace") as f:
            count = replay(f, analyzer)
    except OSError as exc:
        logger.error("Unable to open log file: %s (%s)", log_path, exc)
        return 1
    logger.info("Analyzed %d samples from %s", count, log_path)
    return 0
