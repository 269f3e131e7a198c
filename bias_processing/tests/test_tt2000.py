"""Tests for TT2000 <-> UTC conversions around leap seconds."""

from __future__ import annotations

import numpy as np
import pytest

from bias_processing.processing.tt2000 import (
    NS_PER_SECOND,
    bin_boundary_reference,
    is_in_leap_second,
    tt2000_to_utc_str,
    tt2000_to_wols,
    utc_str_to_tt2000,
    wols_to_tt2000,
)


def test_tt2000_zero() -> None:
    assert utc_str_to_tt2000("2000-01-01T11:58:55.816") == 0
    assert tt2000_to_utc_str(0, n_decimals=3) == "2000-01-01T11:58:55.816"


def test_known_value_after_2017_leap_second() -> None:
    # 2017-01-01T00:00:00 UTC: 17 years of UTC seconds plus 5 leap seconds since 2000.
    tt = utc_str_to_tt2000("2017-01-01T00:00:00")
    wols = (np.datetime64("2017-01-01", "ns") - np.datetime64("2000-01-01T11:58:55.816", "ns")).astype(np.int64)
    assert tt == int(wols) + 5 * NS_PER_SECOND


def test_leap_second_is_a_real_second() -> None:
    t59 = utc_str_to_tt2000("2016-12-31T23:59:59")
    t60 = utc_str_to_tt2000("2016-12-31T23:59:60")
    t00 = utc_str_to_tt2000("2017-01-01T00:00:00")
    assert t60 - t59 == NS_PER_SECOND
    assert t00 - t60 == NS_PER_SECOND
    assert bool(is_in_leap_second(t60))
    assert not bool(is_in_leap_second(t59))
    assert not bool(is_in_leap_second(t00))


def test_leap_second_formatting() -> None:
    t60 = utc_str_to_tt2000("2016-12-31T23:59:60.5")
    assert tt2000_to_utc_str(t60, n_decimals=1) == "2016-12-31T23:59:60.5"
    assert tt2000_to_utc_str(t60 + NS_PER_SECOND // 2, n_decimals=0) == "2017-01-01T00:00:00"


def test_second_60_outside_leap_second_raises() -> None:
    with pytest.raises(ValueError):
        utc_str_to_tt2000("2018-06-30T23:59:60")


def test_unparsable_string_raises() -> None:
    with pytest.raises(ValueError):
        utc_str_to_tt2000("yesterday")


def test_wols_roundtrip_skips_leap_second() -> None:
    t60 = utc_str_to_tt2000("2016-12-31T23:59:60.25")
    t00 = utc_str_to_tt2000("2017-01-01T00:00:00")
    assert int(tt2000_to_wols(t60)) == int(tt2000_to_wols(t00))
    tt = np.array([utc_str_to_tt2000("2016-12-31T23:59:59"), t00, t00 + 7])
    np.testing.assert_array_equal(wols_to_tt2000(tt2000_to_wols(tt)), tt)


def test_utc_string_roundtrip() -> None:
    s = "2020-08-01T12:34:56.123456789"
    assert tt2000_to_utc_str(utc_str_to_tt2000(s)) == s


def test_bin_boundary_reference() -> None:
    tt = utc_str_to_tt2000("2020-08-01T12:34:56.7")
    assert bin_boundary_reference(tt) == utc_str_to_tt2000("2020-08-01T12:34:05")
    assert bin_boundary_reference(tt, second=0) == utc_str_to_tt2000("2020-08-01T12:34:00")


def test_before_1972_not_supported() -> None:
    with pytest.raises(ValueError):
        utc_str_to_tt2000("1960-01-01T00:00:00")
