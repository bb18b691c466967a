from __future__ import annotations

from abc import ABC, abstractmethod

from alerts import Alert, AlertCallback, AlertWriter, Episode
from arrhythmia import RECOVERY_MIN_MS, ArrhythmiaDetector
from hrm import Sample

BRADYCARDIA_BPM = 60
TACHYCARDIA_BPM = 100


class RateDetector(ABC):
    """Hysteresis over the reported bpm: warn on entry, report on recovery."""

    kind = ""

    def __init__(self, emit: AlertCallback, threshold_bpm: int):
        self.emit = emit
        self.threshold_bpm = threshold_bpm
        self.episode = Episode()
        self.extreme_bpm = 0

    @abstractmethod
    def triggered(self, bpm: int) -> bool:
        ...

    @abstractmethod
    def more_extreme(self, a: int, b: int) -> int:
        ...

    @abstractmethod
    def entry_message(self, bpm: int) -> str:
        ...

    @abstractmethod
    def recovery_message(self, duration_s: float) -> str:
        ...

    def update(self, bpm: int, ts_ms: int) -> None:
        now = bpm > 0 and self.triggered(bpm)
        if now and not self.episode.active:
            self.episode.begin(ts_ms)
            self.extreme_bpm = bpm
            self.emit(Alert(self.kind, self.entry_message(bpm), ts_ms))
        elif now:
            self.extreme_bpm = self.more_extreme(self.extreme_bpm, bpm)
        elif self.episode.active:
            duration_s = self.episode.duration_ms(ts_ms) / 1000.0
            self.emit(Alert(self.kind, self.recovery_message(duration_s), ts_ms, recovered=True))
            self.episode.active = False


class BradycardiaDetector(RateDetector):
    kind = "bradycardia"

    def __init__(self, emit: AlertCallback, threshold_bpm: int = BRADYCARDIA_BPM):
        super().__init__(emit, threshold_bpm)

    def triggered(self, bpm: int) -> bool:
        return bpm < self.threshold_bpm

    def more_extreme(self, a: int, b: int) -> int:
        return min(a, b)

    def entry_message(self, bpm: int) -> str:
        return f"Bradycardia: bpm < {self.threshold_bpm} ({bpm})"

    def recovery_message(self, duration_s: float) -> str:
        return f"Bradycardia recovered duration={duration_s:.1f}s lowest_bpm={self.extreme_bpm}"


class TachycardiaDetector(RateDetector):
    kind = "tachycardia"

    def __init__(self, emit: AlertCallback, threshold_bpm: int = TACHYCARDIA_BPM):
        super().__init__(emit, threshold_bpm)

    def triggered(self, bpm: int) -> bool:
        return bpm > self.threshold_bpm

    def more_extreme(self, a: int, b: int) -> int:
        return max(a, b)

    def entry_message(self, bpm: int) -> str:
        return f"Tachycardia: bpm > {self.threshold_bpm} ({bpm})"

    def recovery_message(self, duration_s: float) -> str:
        return f"Tachycardia recovered duration={duration_s:.1f}s highest_bpm={self.extreme_bpm}"


class HealthAnalyzer:
    """
    Screens one sensor's sample stream for rate and rhythm anomalies.

    Timestamps come from the samples, never from a clock, so live data and
    replayed logs run through identical logic. One instance per stream; the
    detectors keep private episode state and are not thread-safe.
    """

    def __init__(self, on_alert: AlertCallback | None = None, recovery_min_ms: int = RECOVERY_MIN_MS):
        self.on_alert = on_alert or AlertWriter()
        self.bradycardia = BradycardiaDetector(self._emit)
        self.tachycardia = TachycardiaDetector(self._emit)
        self.arrhythmia = ArrhythmiaDetector(self._emit, recovery_min_ms=recovery_min_ms)

    def _emit(self, alert: Alert) -> None:
        self.on_alert(alert)

    def process(self, sample: Sample) -> None:
        if sample.bpm is not None:
            self.bradycardia.update(sample.bpm, sample.timestamp_ms)
            self.tachycardia.update(sample.bpm, sample.timestamp_ms)
        if sample.rr_intervals_ms:
            self.arrhythmia.update(sample.rr_intervals_ms, sample.timestamp_ms)
