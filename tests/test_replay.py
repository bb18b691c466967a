from __future__ import annotations

import io

from alerts import AlertWriter
from health import HealthAnalyzer
from replay import analyze_log, iter_samples, replay


def test_iter_samples_skips_noise():
    lines = ["1000,55,1090\n", "\n", "# comment\n", "1500\n", "2000,54\n"]
    assert [s.timestamp_ms for s in iter_samples(lines)] == [1000, 2000]


def test_replay_counts_samples_and_alerts():
    alerts = []
    analyzer = HealthAnalyzer(on_alert=alerts.append)

    count = replay(["0,55", "500,55", "1500,65"], analyzer)

    assert count == 3
    assert [a.recovered for a in alerts] == [False, True]
    assert "duration=1.5s lowest_bpm=55" in alerts[1].message


def test_analyze_log_reports_alerts_with_timestamps(tmp_path):
    log = tmp_path / "polarh10_20250101.log"
    log.write_text("1700000000000,55,1090\n1700000001000,65,920\n", encoding="utf-8")
    stream = io.StringIO()

    status = analyze_log(log, on_alert=AlertWriter(stream=stream, show_ts=True))

    assert status == 0
    out = stream.getvalue().splitlines()
    assert len(out) == 2
    assert "[ts=1700000000000] Bradycardia: bpm < 60 (55)" in out[0]
    assert "[ts=1700000001000] Bradycardia recovered duration=1.0s lowest_bpm=55" in out[1]


def test_analyze_log_missing_file(tmp_path):
    assert analyze_log(tmp_path / "missing.log", on_alert=lambda alert: None) == 1
