"""
RR-interval rhythm screening.

Three episode trackers share one RR history:
- pause/artifact: single RR values outside the physiological range
- ectopic: short-long-short pattern over the last four intervals
- possible AF: RMSSD, turning-point ratio and Shannon entropy over the
  most recent 128 cleaned intervals (Dash et al. 2009 style thresholds)
"""
from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

from alerts import Alert, AlertCallback, Episode, format_duration

MIN_RR_MS = 250
MAX_RR_MS = 2500
AF_WINDOW = 128
RR_HISTORY = 512
RECOVERY_MIN_MS = 1000

# short-long-short ratio thresholds
SHORT_RATIO = 0.8
LONG_RATIO = 1.3
FOLLOW_RATIO = 0.9

ENTROPY_BINS = 16
ENTROPY_TRIM = 8


def is_ectopic_pattern(a: float, b: float, c: float, d: float) -> bool:
    return b / a <= SHORT_RATIO and c / b >= LONG_RATIO and d / c <= FOLLOW_RATIO


def clean_rr(rr: Sequence[int]) -> np.ndarray:
    """Drop the short and long beat of every short-long-short pattern."""
    values = np.asarray(rr, dtype=float)
    if values.size < 5:
        return values

    keep = np.ones(values.size, dtype=bool)
    i = 1
    while i + 2 < values.size:
        if is_ectopic_pattern(values[i - 1], values[i], values[i + 1], values[i + 2]):
            keep[i] = False
            keep[i + 1] = False
            i += 2
        else:
            i += 1
    return values[keep]


def rmssd_ratio(rr: np.ndarray) -> float:
    if rr.size < 2:
        return math.nan
    rmssd = float(np.sqrt(np.mean(np.square(np.diff(rr)))))
    mean_rr = float(np.mean(rr))
    return rmssd / mean_rr if mean_rr > 0.0 else math.nan


def turning_point_ratio(rr: np.ndarray) -> float:
    if rr.size < 3:
        return math.nan
    prev, mid, nxt = rr[:-2], rr[1:-1], rr[2:]
    peaks = (mid > prev) & (mid > nxt)
    troughs = (mid < prev) & (mid < nxt)
    return float(np.count_nonzero(peaks | troughs)) / (rr.size - 2)


def shannon_entropy(rr: np.ndarray, bins: int = ENTROPY_BINS, trim: int = ENTROPY_TRIM) -> float:
    """Normalized entropy of the trimmed RR histogram, in [0, 1]."""
    if rr.size < 32:
        return math.nan
    trimmed = np.sort(rr)[trim:-trim]
    lo, hi = trimmed[0], trimmed[-1]
    if hi <= lo:
        return 0.0

    scaled = (trimmed - lo) / (hi - lo)
    idx = np.clip((scaled * bins).astype(int), 0, bins - 1)
    counts = np.bincount(idx, minlength=bins)
    p = counts[counts > 0] / trimmed.size
    return float(np.sum(p * np.log(p)) / math.log(1.0 / bins))


@dataclass(frozen=True, slots=True)
class AfMetrics:
    rmssd_ratio: float
    turning_point_ratio: float
    entropy: float

    @property
    def possible_af(self) -> bool:
        if any(math.isnan(v) for v in (self.rmssd_ratio, self.turning_point_ratio, self.entropy)):
            return False
        return (
            self.rmssd_ratio > 0.1
            and 0.54 < self.turning_point_ratio < 0.77
            and self.entropy > 0.7
        )


def screen_af(history: Iterable[int], window: int = AF_WINDOW) -> AfMetrics | None:
    """Metrics over the latest cleaned window, or None when too few beats remain."""
    raw = list(history)
    if len(raw) < window:
        return None
    cleaned = clean_rr(raw)
    if cleaned.size < window:
        return None
    segment = cleaned[-window:]
    return AfMetrics(
        rmssd_ratio=rmssd_ratio(segment),
        turning_point_ratio=turning_point_ratio(segment),
        entropy=shannon_entropy(segment),
    )


class ArrhythmiaDetector:
    kind_pause = "pause"
    kind_ectopic = "ectopic"
    kind_af = "possible_af"

    def __init__(
        self,
        emit: AlertCallback,
        recovery_min_ms: int = RECOVERY_MIN_MS,
        history_size: int = RR_HISTORY,
        af_window: int = AF_WINDOW,
    ):
        self.emit = emit
        self.recovery_min_ms = recovery_min_ms
        self.af_window = af_window
        # normal-range beats only
        self.history: deque[int] = deque(maxlen=history_size)

        self.pause = Episode()
        self.pause_min_rr = 0
        self.pause_max_rr = 0
        self.ectopic = Episode()
        self.ectopic_count = 0
        self.af = Episode()

    def update(self, rr_intervals: Sequence[int], ts_ms: int) -> None:
        for rr in rr_intervals:
            if rr < MIN_RR_MS or rr > MAX_RR_MS:
                self._abnormal(rr, ts_ms)
                continue
            if self.pause.active:
                self._end_pause(ts_ms)
            self.history.append(rr)
            self._check_ectopic(ts_ms)
        self._check_af(ts_ms)

    def _abnormal(self, rr: int, ts_ms: int) -> None:
        if not self.pause.active:
            self.pause.begin(ts_ms)
            self.pause_min_rr = rr
            self.pause_max_rr = rr
        else:
            self.pause_min_rr = min(self.pause_min_rr, rr)
            self.pause_max_rr = max(self.pause_max_rr, rr)

        hr_bpm = 60000.0 / rr if rr > 0 else 0.0
        label = "pause/dropout" if rr > MAX_RR_MS else "artifact"
        self.emit(Alert(
            self.kind_pause,
            f"Arrhythmia: {label} candidate rr_ms={rr} hr_bpm={hr_bpm:.1f}",
            ts_ms,
        ))

    def _end_pause(self, ts_ms: int) -> None:
        duration = self.pause.duration_ms(ts_ms)
        if duration > self.recovery_min_ms:
            self.emit(Alert(
                self.kind_pause,
                f"Arrhythmia recovered: pause/artifact duration={format_duration(duration)}"
                f" min_rr={self.pause_min_rr} max_rr={self.pause_max_rr}",
                ts_ms,
                recovered=True,
            ))
        self.pause.active = False

    def _check_ectopic(self, ts_ms: int) -> None:
        if len(self.history) < 4:
            return
        a, b, c, d = (self.history[i] for i in range(-4, 0))
        if is_ectopic_pattern(a, b, c, d):
            if not self.ectopic.active:
                self.ectopic.begin(ts_ms)
                self.ectopic_count = 0
            self.ectopic_count += 1
            self.emit(Alert(
                self.kind_ectopic,
                f"Arrhythmia: ectopic-like short-long pattern rr_ms=[{a},{b},{c},{d}]",
                ts_ms,
            ))
        elif self.ectopic.active:
            duration = self.ectopic.duration_ms(ts_ms)
            if duration > self.recovery_min_ms:
                self.emit(Alert(
                    self.kind_ectopic,
                    f"Arrhythmia recovered: ectopic duration={format_duration(duration)}"
                    f" count={self.ectopic_count}",
                    ts_ms,
                    recovered=True,
                ))
            self.ectopic.active = False

    def _check_af(self, ts_ms: int) -> None:
        metrics = screen_af(self.history, self.af_window)
        possible = metrics is not None and metrics.possible_af

        if possible and not self.af.active:
            self.af.begin(ts_ms)
            self.emit(Alert(
                self.kind_af,
                "Arrhythmia: possible AF (RR-only screening)"
                f" rmssd_ratio={metrics.rmssd_ratio:.3f}"
                f" tpr={metrics.turning_point_ratio:.3f}"
                f" se={metrics.entropy:.3f}",
                ts_ms,
            ))
        elif not possible and self.af.active:
            duration = self.af.duration_ms(ts_ms)
            if duration > self.recovery_min_ms:
                self.emit(Alert(
                    self.kind_af,
                    f"Arrhythmia recovered: possible AF duration={format_duration(duration)}",
                    ts_ms,
                    recovered=True,
                ))
            self.af.active = False
