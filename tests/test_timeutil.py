import pytest

from ftlstream.timeutil import (
    NTP_EPOCH_OFFSET,
    Timeval,
    ms_elapsed_since,
    subtract_to_ms,
    subtract_to_us,
)


@pytest.mark.parametrize("us", [0, 1, 999_999, 1_000_000, 1_500_000, -1_500_000, 123_456_789])
def test_from_us_round_trip(us):
    tv = Timeval.from_us(us)
    assert tv.to_us() == us
    assert abs(tv.usec) < 1_000_000


def test_from_us_truncates_toward_zero():
    assert Timeval.from_us(-1_500_000) == Timeval(-1, -500_000)


def test_from_us_splits_seconds():
    assert Timeval.from_us(2_000_007) == Timeval(2, 7)


def test_subtraction_matches_subtract_to_us():
    end = Timeval(10, 100)
    start = Timeval(8, 900_000)
    diff = end - start
    assert diff.to_us() == subtract_to_us(end, start)
    assert (start - end).to_us() == -diff.to_us()


def test_subtract_to_ms_truncates():
    assert subtract_to_ms(Timeval(0, 0), Timeval(0, 1500)) == -1
    assert subtract_to_ms(Timeval(1, 0), Timeval(0, 0)) == 1000


def test_add_us_normalises_microseconds():
    tv = Timeval(5, 900_000).add_us(200_000)
    assert tv.usec < 1_000_000
    assert tv.to_us() == Timeval(5, 900_000).to_us() + 200_000


def test_add_ms_consistent_with_add_us():
    base = Timeval(3, 250_000)
    assert base.add_ms(1750) == base.add_us(1_750_000)
    assert base.add_ms(-20).to_us() == base.to_us() - 20_000


def test_to_ms_of_whole_seconds():
    assert Timeval(2, 0).to_ms() == 2000.0
    assert Timeval(0, 500).to_ms() == 0.5


def test_to_ntp_epoch():
    assert Timeval(0, 0).to_ntp() == NTP_EPOCH_OFFSET << 32


def test_to_ntp_half_second_fraction():
    assert Timeval(0, 500_000).to_ntp() == (NTP_EPOCH_OFFSET << 32) | (1 << 31)


def test_now_is_monotone_enough():
    first = Timeval.now()
    second = Timeval.now()
    assert subtract_to_us(second, first) >= 0
    assert 0 <= first.usec < 1_000_000


def test_ms_elapsed_since_past_time():
    start = Timeval.now().add_ms(-50)
    elapsed = ms_elapsed_since(start)
    assert 50 <= elapsed < 60_000