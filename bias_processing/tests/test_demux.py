"""Tests for BLTS routing and derivation of missing ASRs."""

from __future__ import annotations

import numpy as np
import pytest

from bias_processing.errors import ShapeMismatchError, UnknownConfigurationValueError
from bias_processing.models.asr import ALL_ASR_IDS, AsrId
from bias_processing.models.records import demultiplexer_latching_relay
from bias_processing.processing.demux import BltsCategory, MuxMode, derive_missing, route


# -----------------------------------------------------------------------
# route
# -----------------------------------------------------------------------


def test_route_is_pure() -> None:
    for mode in range(8):
        for dlr in (True, False):
            assert route(mode, dlr) == route(mode, dlr)


def test_route_every_blts_has_one_role() -> None:
    for mode in range(8):
        rt = route(mode, True)
        assert len(rt.blts) == 5
        for src in rt.blts:
            assert isinstance(src.category, BltsCategory)
            assert src.is_asr == (src.asr is not None)


def test_route_standard_operation() -> None:
    rt = route(0, True)
    assert rt.mux_mode is MuxMode.STANDARD_OPERATION
    assert [s.asr for s in rt.blts] == [
        AsrId.DC_V1,
        AsrId.DC_V12,
        AsrId.DC_V23,
        AsrId.AC_V12,
        AsrId.AC_V23,
    ]


def test_route_latching_relay_selects_v13() -> None:
    rt = route(0, False)
    assert rt.blts[1].asr is AsrId.DC_V13
    assert rt.blts[3].asr is AsrId.AC_V13


def test_route_probe_failures() -> None:
    assert [s.asr for s in route(1, True).blts[:3]] == [AsrId.DC_V2, AsrId.DC_V3, AsrId.DC_V23]
    assert [s.asr for s in route(2, True).blts[:3]] == [AsrId.DC_V1, AsrId.DC_V3, AsrId.DC_V13]
    assert [s.asr for s in route(3, True).blts[:3]] == [AsrId.DC_V1, AsrId.DC_V2, AsrId.DC_V12]
    assert [s.asr for s in route(4, True).blts[:3]] == [AsrId.DC_V1, AsrId.DC_V2, AsrId.DC_V3]


def test_route_calibration_modes() -> None:
    assert all(s.category is BltsCategory.REF_2_5V for s in route(5, True).blts[:3])
    for mode in (6, 7):
        rt = route(mode, True)
        assert all(s.category is BltsCategory.GND for s in rt.blts[:3])
        assert rt.blts[4].asr is AsrId.AC_V23


def test_route_nan_is_unknown() -> None:
    rt = route(np.nan, True)
    assert rt.mux_mode is None
    assert all(s.category is BltsCategory.UNKNOWN for s in rt.blts)


@pytest.mark.parametrize("mode", [-1, 8, 2.5, "x", np.inf, -np.inf])
def test_route_illegal_mode_raises(mode) -> None:
    with pytest.raises(UnknownConfigurationValueError):
        route(mode, True)


def test_route_accepts_float_integers() -> None:
    assert route(3.0, True) == route(3, True)


# -----------------------------------------------------------------------
# derive_missing
# -----------------------------------------------------------------------


def _blts(values) -> list:
    return [np.array([[v]], dtype=float) for v in values]


def test_derive_missing_standard_operation() -> None:
    # V1=10, V2=7, V3=3 -> V12=3, V23=4; AC V12=1, V23=2.
    asr = derive_missing(route(0, True), _blts([10.0, 3.0, 4.0, 1.0, 2.0]))
    assert asr.get(AsrId.DC_V2)[0, 0] == pytest.approx(7.0)
    assert asr.get(AsrId.DC_V3)[0, 0] == pytest.approx(3.0)
    assert asr.get(AsrId.DC_V13)[0, 0] == pytest.approx(7.0)
    assert asr.get(AsrId.AC_V13)[0, 0] == pytest.approx(3.0)
    assert set(asr.defined()) == set(ALL_ASR_IDS)


def test_derive_missing_keeps_measured_values() -> None:
    asr = derive_missing(route(4, True), _blts([10.0, 7.0, 3.0, 1.0, 2.0]))
    assert asr.get(AsrId.DC_V1)[0, 0] == 10.0
    assert asr.get(AsrId.DC_V12)[0, 0] == pytest.approx(3.0)
    assert asr.get(AsrId.DC_V23)[0, 0] == pytest.approx(4.0)


def test_derive_missing_probe_1_fails_leaves_v1_undefined() -> None:
    asr = derive_missing(route(1, True), _blts([7.0, 3.0, 4.0, 1.0, 2.0]))
    assert asr.get(AsrId.DC_V1) is None
    assert asr.get(AsrId.DC_V12) is None
    assert asr.get(AsrId.DC_V13) is None
    assert asr.get(AsrId.DC_V2)[0, 0] == 7.0


def test_derive_missing_gnd_gives_only_ac() -> None:
    asr = derive_missing(route(6, True), _blts([0.0, 0.0, 0.0, 1.0, 2.0]))
    assert set(asr.defined()) == {AsrId.AC_V12, AsrId.AC_V13, AsrId.AC_V23}


def test_derive_missing_unknown_gives_nothing() -> None:
    asr = derive_missing(route(np.nan, True), _blts([1.0] * 5))
    assert asr.defined() == ()
    filled = asr.filled((1, 1))
    assert all(np.isnan(v).all() for v in filled.values())


def test_derive_missing_shape_mismatch() -> None:
    blts = _blts([1.0] * 5)
    blts[2] = np.zeros((2, 1))
    with pytest.raises(ShapeMismatchError):
        derive_missing(route(0, True), blts)


def test_latching_relay_is_constant() -> None:
    dlr = demultiplexer_latching_relay(np.arange(4))
    assert dlr.dtype == bool
    assert dlr.tolist() == [True] * 4
