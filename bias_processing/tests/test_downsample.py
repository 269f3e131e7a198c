"""Tests for time binning and per-bin aggregation."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from bias_processing.errors import ShapeMismatchError
from bias_processing.processing.downsample import (
    EMPTY_BIN_QUALITY_FLAG,
    downsample_bin_quality_bitmask,
    downsample_bin_quality_flag,
    downsample_bin_sci_values,
    downsample_epoch,
    downsample_records,
    modified_std_deviation,
    widen_quality_bitmask,
)
from bias_processing.processing.tt2000 import utc_str_to_tt2000

NS = 1_000_000_000
T0 = utc_str_to_tt2000("2020-03-01T00:00:00")


def _u(s: str) -> int:
    return utc_str_to_tt2000(s)


# -----------------------------------------------------------------------
# downsample_epoch
# -----------------------------------------------------------------------


def test_single_timestamp() -> None:
    de = downsample_epoch(np.array([T0 + 6 * NS]), T0, 10 * NS, 5 * NS)
    assert de.n_bins == 1
    assert de.epoch.tolist() == [T0 + 5 * NS]
    assert [r.tolist() for r in de.i_records] == [[0]]
    assert de.bin_size_ns.tolist() == [10 * NS]


def test_boundary_respecting_split() -> None:
    epoch = T0 + np.array([66, 72, 78], dtype=np.int64) * NS
    de = downsample_epoch(epoch, T0, 10 * NS, 5 * NS)
    assert de.n_bins == 2
    assert de.epoch.tolist() == [T0 + 65 * NS, T0 + 75 * NS]
    assert [r.tolist() for r in de.i_records] == [[0], [1, 2]]


def test_record_on_boundary_goes_to_later_bin() -> None:
    de = downsample_epoch(T0 + np.array([0, 10], dtype=np.int64) * NS, T0, 10 * NS, 0)
    assert [r.tolist() for r in de.i_records] == [[0], [1]]


def test_every_record_in_exactly_one_bin() -> None:
    rng = np.random.default_rng(3)
    epoch = T0 + np.sort(rng.choice(10**6, size=500, replace=False)).astype(np.int64) * 10**6
    de = downsample_epoch(epoch, T0 + 3 * NS, 7 * NS, 2 * NS)
    all_i = np.concatenate(de.i_records)
    assert sum(r.size for r in de.i_records) == epoch.size
    assert all_i.tolist() == list(range(epoch.size))
    # Regular output series, gaps included.
    assert np.all(np.diff(de.epoch) == 7 * NS)


def test_empty_bins_are_kept() -> None:
    epoch = T0 + np.array([1, 45], dtype=np.int64) * NS
    de = downsample_epoch(epoch, T0, 10 * NS, 5 * NS)
    assert de.n_bins == 5
    assert de.n_records_per_bin().tolist() == [1, 0, 0, 0, 1]


def test_reference_far_from_data() -> None:
    ref = _u("2025-01-01T00:00:05")
    epoch = np.array([_u("2020-03-01T00:00:07")])
    de = downsample_epoch(epoch, ref, 10 * NS, 5 * NS)
    assert de.epoch.tolist() == [_u("2020-03-01T00:00:10")]


def test_empty_input() -> None:
    de = downsample_epoch(np.zeros(0, dtype=np.int64), T0, 10 * NS, 5 * NS)
    assert de.n_bins == 0
    assert de.i_records == ()


def test_unsorted_input_raises() -> None:
    with pytest.raises(ValueError):
        downsample_epoch(np.array([T0 + 2, T0 + 1]), T0, 10 * NS, 0)


def test_leap_second_bin_is_one_second_longer() -> None:
    epoch = np.array(
        [
            _u("2016-12-31T23:59:46"),
            _u("2016-12-31T23:59:51"),
            _u("2016-12-31T23:59:59"),
            _u("2017-01-01T00:00:02"),
            _u("2017-01-01T00:00:03"),
            _u("2017-01-01T00:00:04"),
            _u("2017-01-01T00:00:34"),
        ]
    )
    de = downsample_epoch(epoch, _u("2020-01-01T00:00:05"), 10 * NS, 5 * NS)
    assert de.epoch.tolist() == [
        _u("2016-12-31T23:59:50"),
        _u("2017-01-01T00:00:00"),
        _u("2017-01-01T00:00:10"),
        _u("2017-01-01T00:00:20"),
        _u("2017-01-01T00:00:30"),
    ]
    assert [r.tolist() for r in de.i_records] == [[0, 1], [2, 3, 4, 5], [], [], [6]]
    assert de.bin_size_ns.tolist() == [10 * NS, 11 * NS, 10 * NS, 10 * NS, 10 * NS]


def test_record_inside_leap_second() -> None:
    epoch = np.array([_u("2016-12-31T23:59:60.5")])
    de = downsample_epoch(epoch, _u("2016-12-31T23:59:55"), 10 * NS, 5 * NS)
    assert de.n_bins == 1
    assert de.i_records[0].tolist() == [0]
    assert de.bin_size_ns.tolist() == [11 * NS]


def test_timestamp_offset_is_from_bin_start() -> None:
    de = downsample_epoch(np.array([T0 + 6 * NS]), _u("2020-03-01T00:00:01"), 10 * NS, 3 * NS)
    assert de.epoch.tolist() == [_u("2020-03-01T00:00:04")]


# -----------------------------------------------------------------------
# Per-bin aggregation
# -----------------------------------------------------------------------


def test_sci_values_single_record() -> None:
    med, mstd = downsample_bin_sci_values(np.array([[1.0, 2.0, 3.0]]), 0)
    np.testing.assert_array_equal(med, [1.0, 2.0, 3.0])
    assert np.isnan(mstd).all() and mstd.shape == (3,)


def test_sci_values_two_records() -> None:
    med, mstd = downsample_bin_sci_values(np.array([[1.0, 2.0, 3.0], [2.0, 3.0, 4.0]]), 0)
    np.testing.assert_allclose(med, [1.5, 2.5, 3.5])
    np.testing.assert_allclose(mstd, np.sqrt(0.5) * np.ones(3))


def test_sci_values_spread_from_median_not_mean() -> None:
    med, mstd = downsample_bin_sci_values(np.array([[1.0], [2.0], [10.0]]), 0)
    assert med[0] == 2.0
    assert mstd[0] == pytest.approx(np.sqrt(65.0 / 2))
    assert mstd[0] != pytest.approx(np.std(np.array([1.0, 2.0, 10.0]), ddof=1))


def test_sci_values_identical_rows() -> None:
    med, mstd = downsample_bin_sci_values(np.array([[1.0, 2.0, 3.0], [1.0, 2.0, 3.0]]), 0)
    np.testing.assert_array_equal(mstd, [0.0, 0.0, 0.0])


def test_sci_values_empty_bin() -> None:
    med, mstd = downsample_bin_sci_values(np.zeros((0, 2)), 0)
    assert np.isnan(med).all() and np.isnan(mstd).all()
    assert med.shape == (2,)


def test_sci_values_empty_bin_zero_columns() -> None:
    med, mstd = downsample_bin_sci_values(np.zeros((0, 0)), 3)
    assert med.shape == (0,) and mstd.shape == (0,)


def test_sci_values_too_few_records() -> None:
    med, mstd = downsample_bin_sci_values(np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]]), 4)
    assert np.isnan(med).all() and np.isnan(mstd).all()


def test_sci_values_requires_2d() -> None:
    with pytest.raises(ShapeMismatchError):
        downsample_bin_sci_values(np.zeros(3), 0)


def test_modified_std_deviation_reference() -> None:
    x = np.array([[0.0], [2.0]])
    np.testing.assert_allclose(modified_std_deviation(x, np.array([0.0])), [2.0])


def test_quality_flag_aggregation() -> None:
    assert downsample_bin_quality_flag(np.array([3.0, 1.0, 2.0])) == 1.0
    assert downsample_bin_quality_flag(np.zeros(0)) == EMPTY_BIN_QUALITY_FLAG


def test_quality_flag_aggregation_skips_fill_values() -> None:
    assert downsample_bin_quality_flag(np.array([2.0, np.nan])) == 2.0
    assert np.isnan(downsample_bin_quality_flag(np.array([np.nan, np.nan])))


def test_downsample_records_quality_flag_with_fill_value() -> None:
    d = downsample_records(
        T0 + np.array([1, 2, 3], dtype=np.int64) * NS,
        {"x": np.array([1.0, 2.0, 3.0])},
        np.array([2.0, np.nan, 3.0]),
        np.zeros(3, dtype=np.uint16),
        np.zeros(3, dtype=np.uint16),
        boundary_ref=T0,
        bin_length_wols_ns=10 * NS,
        bin_timestamp_pos_wols_ns=5 * NS,
        n_min_samples_per_bin=1,
    )
    assert d.quality_flag.tolist() == [2.0]


def test_bitmask_aggregation() -> None:
    b = np.array([0x0001, 0x0004, 0x0100], dtype=np.uint16)
    assert downsample_bin_quality_bitmask(b) == 0x0105
    assert downsample_bin_quality_bitmask(np.zeros(0, dtype=np.uint16)) == 0


def test_bitmask_aggregation_rejects_other_widths() -> None:
    with pytest.raises(TypeError):
        downsample_bin_quality_bitmask(np.array([1], dtype=np.uint8))


def test_widen_quality_bitmask() -> None:
    b = widen_quality_bitmask(np.array([1, 255], dtype=np.uint8))
    assert b.dtype == np.uint16
    assert b.tolist() == [1, 255]
    with pytest.raises(TypeError):
        widen_quality_bitmask(np.array([1], dtype=np.int32))


# -----------------------------------------------------------------------
# downsample_records
# -----------------------------------------------------------------------


def _product(quality_flag_min_for_use=None):
    epoch = T0 + np.array([1, 2, 3, 4, 25], dtype=np.int64) * NS
    sci = {
        "scpot": np.array([1.0, 2.0, 3.0, 100.0, 5.0]),
        "edc": np.arange(10.0).reshape(5, 2),
    }
    qf = np.array([2.0, 2.0, 2.0, 0.0, 3.0])
    qbm = np.array([0, 1, 0, 2, 0], dtype=np.uint8)
    l2qbm = np.array([0, 0, 1, 0, 2], dtype=np.uint16)
    return downsample_records(
        epoch,
        sci,
        qf,
        qbm,
        l2qbm,
        boundary_ref=T0,
        bin_length_wols_ns=10 * NS,
        bin_timestamp_pos_wols_ns=5 * NS,
        n_min_samples_per_bin=1,
        quality_flag_min_for_use=quality_flag_min_for_use,
    )


def test_downsample_records_quality_and_empty_bin() -> None:
    d = _product()
    assert d.n_bins == 3
    assert d.n_records.tolist() == [4, 0, 1]
    assert d.quality_flag.tolist() == [0.0, EMPTY_BIN_QUALITY_FLAG, 3.0]
    assert d.quality_bitmask.dtype == np.uint16
    assert d.quality_bitmask.tolist() == [3, 0, 0]
    assert d.l2_quality_bitmask.tolist() == [1, 0, 2]
    assert np.isnan(d.sci_median["scpot"][1]).all()
    assert d.delta_plus_minus_ns.tolist() == [5 * NS] * 3


def test_downsample_records_excludes_low_quality() -> None:
    d = _product(quality_flag_min_for_use=2)
    # Record 3 (QF 0, value 100) is blanked; NaN propagates to the median.
    assert np.isnan(d.sci_median["scpot"][0, 0])
    d2 = _product()
    assert d2.sci_median["scpot"][0, 0] == pytest.approx(2.5)


def test_downsample_records_to_frame() -> None:
    df = _product().to_frame()
    assert isinstance(df, pd.DataFrame)
    assert len(df) == 3
    for c in ("epoch", "quality_flag", "scpot", "scpot_mstd", "edc_0", "edc_1_mstd"):
        assert c in df.columns
    assert df["edc_0"].iloc[2] == 8.0


def test_downsample_records_shape_mismatch() -> None:
    with pytest.raises(ShapeMismatchError):
        downsample_records(
            T0 + np.arange(3, dtype=np.int64),
            {"x": np.zeros(2)},
            np.zeros(3),
            np.zeros(3, dtype=np.uint16),
            np.zeros(3, dtype=np.uint16),
            boundary_ref=T0,
            bin_length_wols_ns=10 * NS,
            bin_timestamp_pos_wols_ns=5 * NS,
            n_min_samples_per_bin=1,
        )
