"""TT2000 time scale, leap seconds and UTC conversions.

TT2000 is int64 nanoseconds of Terrestrial Time since 2000-01-01T12:00:00 TT.
It counts every physical second, including inserted UTC leap seconds.

WOLS ("without leap seconds") is int64 nanoseconds since
2000-01-01T00:00:00 UTC counting every UTC day as exactly 86400 s. It is the
scale in which regular UTC time grids (e.g. downsampling bin boundaries) are
defined. A leap second 23:59:60.x has no WOLS value of its own; it maps to
the start of the following day.

Only UTC from 1972-01-01 onwards is supported (integer TAI-UTC).
"""

from __future__ import annotations

import re
from typing import Union

import numpy as np

NS_PER_SECOND = 1_000_000_000

# (UTC date from which the offset applies, TAI-UTC in seconds).
LEAP_SECOND_TABLE = (
    ("1972-01-01", 10),
    ("1972-07-01", 11),
    ("1973-01-01", 12),
    ("1974-01-01", 13),
    ("1975-01-01", 14),
    ("1976-01-01", 15),
    ("1977-01-01", 16),
    ("1978-01-01", 17),
    ("1979-01-01", 18),
    ("1980-01-01", 19),
    ("1981-07-01", 20),
    ("1982-07-01", 21),
    ("1983-07-01", 22),
    ("1985-07-01", 23),
    ("1988-01-01", 24),
    ("1990-01-01", 25),
    ("1991-01-01", 26),
    ("1992-07-01", 27),
    ("1993-07-01", 28),
    ("1994-07-01", 29),
    ("1996-01-01", 30),
    ("1997-07-01", 31),
    ("1999-01-01", 32),
    ("2006-01-01", 33),
    ("2009-01-01", 34),
    ("2012-07-01", 35),
    ("2015-07-01", 36),
    ("2017-01-01", 37),
)

_WOLS_ORIGIN = np.datetime64("2000-01-01T00:00:00", "ns")
# UTC instant of TT2000 == 0 (TAI-UTC was 32 s, TT-TAI is 32.184 s).
_WOLS_TT2000_ZERO = int((np.datetime64("2000-01-01T11:58:55.816", "ns") - _WOLS_ORIGIN).astype(np.int64))
_DAT_AT_J2000 = 32

_LEAP_WOLS = np.array(
    [(np.datetime64(d, "ns") - _WOLS_ORIGIN).astype(np.int64) for d, _ in LEAP_SECOND_TABLE],
    dtype=np.int64,
)
_LEAP_DAT = np.array([dat for _, dat in LEAP_SECOND_TABLE], dtype=np.int64)
# TT2000 at the start of every table date.
_LEAP_TT = _LEAP_WOLS - _WOLS_TT2000_ZERO + (_LEAP_DAT - _DAT_AT_J2000) * NS_PER_SECOND

_UTC_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})T(?P<hm>\d{2}:\d{2}):(?P<s>\d{2})(?:\.(?P<frac>\d{1,9}))?Z?$"
)

IntArrayLike = Union[int, np.integer, np.ndarray]


def _tai_minus_utc_s(wols: np.ndarray) -> np.ndarray:
    i = np.searchsorted(_LEAP_WOLS, wols, side="right") - 1
    if np.any(i < 0):
        raise ValueError("UTC before 1972-01-01 is not supported")
    return _LEAP_DAT[i]


def wols_to_tt2000(wols: IntArrayLike) -> np.ndarray:
    """Convert WOLS nanoseconds to TT2000."""
    w = np.asarray(wols, dtype=np.int64)
    return w - _WOLS_TT2000_ZERO + (_tai_minus_utc_s(w) - _DAT_AT_J2000) * NS_PER_SECOND


def tt2000_to_wols(tt2000: IntArrayLike) -> np.ndarray:
    """Convert TT2000 to WOLS nanoseconds.

    Instants inside a positive leap second map to the start of the next UTC
    day, so the conversion is monotonic (non-decreasing).
    """
    tt = np.asarray(tt2000, dtype=np.int64)
    j = np.searchsorted(_LEAP_TT, tt, side="right")
    if np.any(j == 0):
        raise ValueError("TT2000 before 1972-01-01 UTC is not supported")
    i = j - 1
    wols = tt + _WOLS_TT2000_ZERO - (_LEAP_DAT[i] - _DAT_AT_J2000) * NS_PER_SECOND

    j_next = np.minimum(j, _LEAP_TT.size - 1)
    return np.where(is_in_leap_second(tt), _LEAP_WOLS[j_next], wols)


def is_in_leap_second(tt2000: IntArrayLike) -> np.ndarray:
    """True for TT2000 instants inside an inserted UTC leap second (23:59:60)."""
    tt = np.asarray(tt2000, dtype=np.int64)
    j = np.searchsorted(_LEAP_TT, tt, side="right")
    # Entry 0 starts the table and is not preceded by an inserted second.
    j_next = np.minimum(j, _LEAP_TT.size - 1)
    return (j < _LEAP_TT.size) & (j >= 1) & (tt >= _LEAP_TT[j_next] - NS_PER_SECOND)


def utc_str_to_tt2000(utc: str) -> int:
    """Parse ``YYYY-MM-DDThh:mm:ss[.fffffffff][Z]`` (second 60 allowed) to TT2000."""
    m = _UTC_RE.match(utc.strip())
    if m is None:
        raise ValueError(f"Can not parse UTC string '{utc}'")
    sec = int(m.group("s"))
    if sec > 60:
        raise ValueError(f"Illegal seconds value in '{utc}'")
    frac = m.group("frac") or ""
    frac_ns = int(frac.ljust(9, "0")) if frac else 0

    if sec == 60:
        # Parse as :59 and add one second; the result lies inside the leap second.
        base = np.datetime64(f"{m.group('date')}T{m.group('hm')}:59", "ns")
        tt = int(wols_to_tt2000(int((base - _WOLS_ORIGIN).astype(np.int64)))) + NS_PER_SECOND + frac_ns
        if not bool(is_in_leap_second(tt)):
            raise ValueError(f"'{utc}' is not a leap second")
        return tt

    base = np.datetime64(f"{m.group('date')}T{m.group('hm')}:{sec:02d}", "ns")
    return int(wols_to_tt2000(int((base - _WOLS_ORIGIN).astype(np.int64)) + frac_ns))


def tt2000_to_utc_str(tt2000: int, n_decimals: int = 9) -> str:
    """Format one TT2000 value as ISO UTC, printing leap seconds as ``23:59:60``."""
    if not 0 <= n_decimals <= 9:
        raise ValueError(f"n_decimals must be in [0, 9], got {n_decimals}")
    tt = int(tt2000)
    leap = bool(is_in_leap_second(tt))
    if leap:
        # Format the preceding second, then relabel it.
        tt -= NS_PER_SECOND
    wols = int(tt2000_to_wols(tt))
    s = np.datetime_as_string(_WOLS_ORIGIN + np.timedelta64(wols, "ns"), unit="ns")
    if leap:
        s = s[:17] + "60" + s[19:]
    return s[: 20 + n_decimals] if n_decimals else s[:19]


def bin_boundary_reference(first_epoch: int, second: int = 5) -> int:
    """TT2000 of second ``second`` of the UTC minute containing ``first_epoch``."""
    w = int(tt2000_to_wols(first_epoch))
    minute_ns = 60 * NS_PER_SECOND
    ref_w = (w // minute_ns) * minute_ns + second * NS_PER_SECOND
    return int(wols_to_tt2000(ref_w))
