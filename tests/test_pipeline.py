from __future__ import annotations

from health import HealthAnalyzer
from pipeline import NotificationPipeline

FRAME = bytes([0x11, 0x48, 0x00, 0xC0, 0x03, 0x40, 0x03])


class RecordingAnalyzer:
    def __init__(self):
        self.samples = []

    def process(self, sample):
        self.samples.append(sample)


def test_process_emits_canonical_line():
    lines = []
    pipeline = NotificationPipeline(lines.append)

    sample = pipeline.process(FRAME, 1700000000000)

    assert lines == ["1700000000000,72,938,813"]
    assert sample.bpm == 72
    assert pipeline.last_line == lines[0]


def test_identical_consecutive_lines_are_suppressed():
    lines = []
    analyzer = RecordingAnalyzer()
    pipeline = NotificationPipeline(lines.append, analyzer=analyzer)

    pipeline.process(FRAME, 1000)
    assert pipeline.process(FRAME, 1000) is None
    pipeline.process(FRAME, 1001)
    pipeline.process(FRAME, 1000)

    assert lines == ["1000,72,938,813", "1001,72,938,813", "1000,72,938,813"]
    assert pipeline.suppressed == 1
    assert [s.timestamp_ms for s in analyzer.samples] == [1000, 1001, 1000]


def test_undecodable_frame_still_emits_timestamp():
    lines = []
    pipeline = NotificationPipeline(lines.append)

    pipeline.process(b"", 5)
    pipeline.process(bytes([0x10, 0x3C, 0x00]), 6)

    assert lines == ["5", "6,60"]


def test_handle_properties_uses_clock_and_ignores_other_keys():
    lines = []
    pipeline = NotificationPipeline(lines.append, clock_ms=lambda: 42)

    pipeline.handle_properties({"Notifying": True})
    pipeline.handle_properties({"Value": [0x00, 0x48]})
    pipeline.handle_properties({"Value": bytearray([0x00, 0x48])})

    assert lines == ["42,72"]


def test_pipeline_feeds_health_analyzer():
    alerts = []
    lines = []
    pipeline = NotificationPipeline(lines.append, analyzer=HealthAnalyzer(on_alert=alerts.append))

    pipeline.process(bytes([0x00, 50]), 0)
    pipeline.process(bytes([0x00, 70]), 2000)

    assert [a.kind for a in alerts] == ["bradycardia", "bradycardia"]
    assert alerts[1].recovered
