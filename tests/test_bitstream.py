import pytest

from ftlstream.bitstream import BitReader


def pack(bits: str) -> bytes:
    bits = bits + "0" * (-len(bits) % 8)
    return bytes(int(bits[i:i + 8], 2) for i in range(0, len(bits), 8))


def ue_bits(n: int) -> str:
    v = n + 1
    return "0" * (v.bit_length() - 1) + format(v, "b")


def se_bits(v: int) -> str:
    k = 2 * v - 1 if v > 0 else -2 * v
    return ue_bits(k)


def test_fixed_width_fields_round_trip_across_bytes():
    reader = BitReader(pack("1010" + format(0xBC, "08b") + "1" + format(300, "016b")))
    assert reader.read_bits(4) == 0b1010
    assert reader.read_bits(8) == 0xBC
    assert reader.read_bits(1) == 1
    assert reader.read_bits(16) == 300


def test_read_32_bits():
    reader = BitReader((0xDEADBEEF).to_bytes(4, "big"))
    assert reader.read_bits(32) == 0xDEADBEEF
    assert reader.bits_left == 0


def test_ue_known_codes():
    reader = BitReader(pack("1" + "010" + "00100"))
    assert [reader.read_ue() for _ in range(3)] == [0, 1, 3]


def test_ue_round_trip():
    values = list(range(0, 300))
    reader = BitReader(pack("".join(ue_bits(v) for v in values)))
    assert [reader.read_ue() for _ in values] == values


def test_se_round_trip():
    values = list(range(-150, 151))
    reader = BitReader(pack("".join(se_bits(v) for v in values)))
    assert [reader.read_se() for _ in values] == values


def test_read_signed_negates_value():
    reader = BitReader(pack(format(5, "04b") + format(0, "04b")))
    assert reader.read_signed(4) == -5
    assert reader.read_signed(4) == 0


def test_peek_does_not_advance():
    reader = BitReader(pack(format(0x5A, "08b") + format(0x3C, "08b")))
    assert reader.peek(8) == 0x5A
    assert reader.peek(16) == (0x5A << 8) | 0x3C
    assert reader.read_bits(8) == 0x5A
    assert reader.position == 8


def test_zero_bits_read_is_zero_and_keeps_position():
    reader = BitReader(b"\xff")
    assert reader.read_bits(0) == 0
    assert reader.position == 0


def test_byte_alignment_tracking():
    reader = BitReader(b"\x00\x00")
    assert reader.is_byte_aligned()
    reader.read_bits(3)
    assert not reader.is_byte_aligned()
    reader.read_bits(5)
    assert reader.is_byte_aligned()


def test_reading_past_end_raises():
    reader = BitReader(b"\x01")
    reader.read_bits(6)
    with pytest.raises(EOFError):
        reader.read_bits(3)


def test_ue_on_all_zero_data_raises():
    reader = BitReader(b"\x00\x00")
    with pytest.raises(EOFError):
        reader.read_ue()


def test_negative_bit_count_rejected():
    with pytest.raises(ValueError):
        BitReader(b"\x00").read_bits(-1)