"""MSB-first bit reader for H.264 RBSP data (ITU-T H.264 sections 7.2 and 9.1)."""

from __future__ import annotations

_INT32_RANGE = 1 << 32
_INT32_HALF = 1 << 31


class BitReader:
    """Reads bit fields and Exp-Golomb codes from a byte buffer."""

    def __init__(self, data):
        self.data = bytes(data)
        self._byte_idx = 0
        self._bit_idx = 8  # bits left in the current byte

    @property
    def position(self) -> int:
        """Number of bits consumed so far."""
        return self._byte_idx * 8 + (8 - self._bit_idx)

    @property
    def bits_left(self) -> int:
        """Number of bits not yet consumed."""
        return len(self.data) * 8 - self.position

    def _read(self, bits: int, advance: bool) -> int:
        if bits < 0:
            raise ValueError("bit count must not be negative")
        if bits == 0:
            return 0
        if bits > self.bits_left:
            raise EOFError(
                f"cannot read {bits} bits, only {self.bits_left} left"
            )

        value = 0
        byte_idx = self._byte_idx
        bit_idx = self._bit_idx
        while bits > 0:
            count = min(bit_idx, bits)
            shift = bit_idx - count
            chunk = (self.data[byte_idx] >> shift) & ((1 << count) - 1)
            value = (value << count) | chunk
            bits -= count
            bit_idx -= count
            if bit_idx == 0:
                bit_idx = 8
                byte_idx += 1

        if advance:
            self._byte_idx = byte_idx
            self._bit_idx = bit_idx
        return value

    def read_bits(self, bits):
        """Read an unsigned ``bits``-wide field, u(n)."""
        return self._read(bits, advance=True)

    def read_signed(self, bits):
        """Read a ``bits``-wide field and return its negation as a 32-bit int, i(n)."""
        value = self._read(bits, advance=True)
        return ((-value + _INT32_HALF) % _INT32_RANGE) - _INT32_HALF

    def read_ue(self):
        """Read an unsigned Exp-Golomb code, ue(v)."""
        leading_zeros = 0
        while self._read(1, advance=True) == 0:
            leading_zeros += 1
        return (1 << leading_zeros) - 1 + self._read(leading_zeros, advance=True)

    def read_se(self):
        """Read a signed Exp-Golomb code, se(v)."""
        code_num = self.read_ue()
        magnitude = (code_num + 1) >> 1
        return magnitude if code_num & 1 else -magnitude

    def peek(self, bits):
        """Return the next ``bits`` bits without consuming them."""
        return self._read(bits, advance=False)

    def is_byte_aligned(self):
        """True when the read position sits on a byte boundary."""
        return self._bit_idx == 8