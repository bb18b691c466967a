from __future__ import annotations

from hrm import Sample, decode_hrm, parse_line, rr_to_ms


def test_decode_8bit_bpm_without_rr():
    assert decode_hrm(bytes([0x00, 72])) == (72, [])


def test_decode_16bit_bpm_with_rr_intervals():
    data = bytes([0x11, 0x48, 0x00, 0xC0, 0x03, 0x40, 0x03])
    assert decode_hrm(data) == (72, [938, 813])


def test_decode_8bit_bpm_with_rr_intervals():
    data = bytes([0x10, 0x48, 0xC0, 0x03, 0x40, 0x03])
    assert decode_hrm(data) == (72, [938, 813])


def test_decode_empty_and_truncated_frames():
    assert decode_hrm(b"") == (None, [])
    assert decode_hrm(bytes([0x01])) == (None, [])
    assert decode_hrm(bytes([0x01, 0x48])) == (None, [])
    assert decode_hrm(bytes([0x00])) == (None, [])


def test_decode_skips_energy_expended():
    data = bytes([0x18, 80, 0x34, 0x12, 0x00, 0x04])
    assert decode_hrm(data) == (80, [1000])


def test_decode_energy_expended_truncated_stops_quietly():
    assert decode_hrm(bytes([0x18, 80, 0x34])) == (80, [])


def test_decode_drops_trailing_half_rr():
    data = bytes([0x10, 60, 0x00, 0x04, 0x00])
    assert decode_hrm(data) == (60, [1000])


def test_rr_rounding_to_nearest_ms():
    assert rr_to_ms(960) == 938
    assert rr_to_ms(1024) == 1000
    assert rr_to_ms(1) == 1
    assert rr_to_ms(0) == 0


def test_sample_line_formats():
    assert Sample(1000, 72, (800, 810)).to_line() == "1000,72,800,810"
    assert Sample(1000, None, (800,)).to_line() == "1000,800"
    assert Sample(1000, None).to_line() == "1000"
    assert Sample(1000, 0).to_line() == "1000,0"


def test_parse_line_accepts_logged_records():
    assert parse_line("1700000000000,65,912,930\n") == Sample(1700000000000, 65, (912, 930))
    assert parse_line("1700000000000,65") == Sample(1700000000000, 65, ())


def test_parse_line_rejects_short_or_malformed_lines():
    assert parse_line("") is None
    assert parse_line("1700000000000") is None
    assert parse_line("1700000000000,-5") is None
    assert parse_line("ts,bpm") is None
    assert parse_line("1,2,,3") is None
    assert parse_line("[info] Connected.") is None
