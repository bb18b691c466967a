"""Heart Rate Measurement (0x2A37) frames and the samples decoded from them."""
from __future__ import annotations

from dataclasses import dataclass

HR_MEASUREMENT_UUID = "00002a37-0000-1000-8000-00805f9b34fb"

FLAG_HR_16BIT = 0x01
FLAG_ENERGY_EXPENDED = 0x08
FLAG_RR_PRESENT = 0x10


@dataclass(frozen=True, slots=True)
class Sample:
    timestamp_ms: int
    bpm: int | None
    rr_intervals_ms: tuple[int, ...] = ()

    def to_line(self) -> str:
        """Canonical output record: ``ts[,bpm][,rr1,rr2,...]``."""
        fields = [str(self.timestamp_ms)]
        if self.bpm is not None:
            fields.append(str(self.bpm))
        fields.extend(str(rr) for rr in self.rr_intervals_ms)
        return ",".join(fields)


def rr_to_ms(raw: int) -> int:
    # 1/1024 s units, rounded to the nearest millisecond
    return (raw * 1000 + 512) // 1024


def decode_hrm(data: bytes) -> tuple[int | None, list[int]]:
    """
    Decode one notification payload into (bpm, rr_ms).

    Fields whose bytes are missing are left out, so short or malformed
    frames decode partially and never raise.
    """
    if not data:
        return None, []

    flags = data[0]
    i = 1
    bpm = None

    if flags & FLAG_HR_16BIT:
        if len(data) >= i + 2:
            bpm = int.from_bytes(data[i : i + 2], byteorder="little")
            i += 2
    elif len(data) >= i + 1:
        bpm = data[i]
        i += 1

    if flags & FLAG_ENERGY_EXPENDED:
        if len(data) < i + 2:
            return bpm, []
        i += 2

    rr_list = []
    if flags & FLAG_RR_PRESENT:
        while len(data) >= i + 2:
            rr_list.append(rr_to_ms(int.from_bytes(data[i : i + 2], byteorder="little")))
            i += 2

    return bpm, rr_list


def parse_line(line: str) -> Sample | None:
    """
    Parse a logged ``ts,bpm[,rr...]`` line.

    Only unsigned integers separated by single commas are accepted; lines
    with fewer than two fields are rejected.
    """
    text = line.strip()
    if not text:
        return None
    parts = text.split(",")
    if len(parts) < 2 or not all(p.isascii() and p.isdigit() for p in parts):
        return None
    values = [int(p) for p in parts]
    return Sample(timestamp_ms=values[0], bpm=values[1], rr_intervals_ms=tuple(values[2:]))
