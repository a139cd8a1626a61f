"""Second/microsecond time values and helpers for elapsed-time arithmetic."""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass

USEC_IN_SEC = 1_000_000
MSEC_IN_USEC = 1000
NTP_EPOCH_OFFSET = 2208988800
_NTP_FRACTION_PER_USEC = 4294.967296
_U64 = (1 << 64) - 1


def _trunc_div(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def _to_float32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


@dataclass(frozen=True)
class Timeval:
    """A point in time as whole seconds plus microseconds."""

    sec: int = 0
    usec: int = 0

    @classmethod
    def now(cls):
        """The current wall-clock time."""
        ns = time.time_ns()
        return cls(ns // 1_000_000_000, (ns // 1000) % USEC_IN_SEC)

    @classmethod
    def from_us(cls, us):
        """Split microseconds into seconds and a remainder of the same sign."""
        us = int(us)
        sec = _trunc_div(us, USEC_IN_SEC)
        return cls(sec, us - sec * USEC_IN_SEC)

    def to_us(self):
        return self.sec * USEC_IN_SEC + self.usec

    def to_ms(self):
        """Milliseconds, rounded to single precision."""
        return _to_float32(self.sec * 1000.0 + self.usec / 1000.0)

    def to_ntp(self):
        """64-bit NTP timestamp: seconds since 1900 in the high word."""
        high = (((self.sec + NTP_EPOCH_OFFSET) & _U64) << 32) & _U64
        fraction = (self.usec & 0xFFFFFFFF) * _NTP_FRACTION_PER_USEC
        return int(float(high) + fraction) & _U64

    def add_ms(self, ms):
        """Return this time moved by ``ms`` milliseconds."""
        return self.add_us(int(ms) * MSEC_IN_USEC)

    def add_us(self, us):
        """Return this time moved by ``us`` microseconds."""
        delta = Timeval.from_us(us)
        sec = self.sec + delta.sec
        usec = self.usec + delta.usec
        if usec >= USEC_IN_SEC:
            usec -= USEC_IN_SEC
            sec += 1
        return Timeval(sec, usec)

    def __sub__(self, other):
        if not isinstance(other, Timeval):
            return NotImplemented
        return Timeval.from_us(subtract_to_us(self, other))


def subtract_to_us(end, start):
    """Microseconds from ``start`` to ``end``."""
    return end.to_us() - start.to_us()


def subtract_to_ms(end, start):
    """Whole milliseconds from ``start`` to ``end``, truncated toward zero."""
    return _trunc_div(subtract_to_us(end, start), MSEC_IN_USEC)


def ms_elapsed_since(start):
    """Whole milliseconds elapsed since ``start``."""
    return subtract_to_ms(Timeval.now(), start)