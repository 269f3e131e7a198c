"""Processing settings -- every threshold the processing core reads.

A ProcessingSettings groups all configuration that affects the output into
one frozen dataclass. It is resolved once at the pipeline boundary and passed
explicitly to the functions that need it. It can be:

- Constructed with defaults and overridden via ``dataclasses.replace()``
- Built from a read-only key/value settings provider (dotted keys)
- Serialized to/from a dict for provenance
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Tuple

from bias_processing.errors import UnknownConfigurationValueError


# Dotted settings-provider key -> ProcessingSettings field.
SETTING_KEYS: Dict[str, str] = {
    "PROCESSING.L2.REMOVE_DATA.MUX_MODES": "mux_modes_remove",
    "PROCESSING.L2.LFR.REMOVE_DATA.MUX_MODE.MARGIN_S": "lfr_remove_margin_s",
    "PROCESSING.L2.TDS.REMOVE_DATA.MUX_MODE.MARGIN_S": "tds_remove_margin_s",
    "PROCESSING.RCS_NSO.TEST_IDS_ENABLED": "test_nso_ids_enabled",
    "PROCESSING.L2_TO_L3.N_MIN_SAMPLES_PER_BIN": "n_min_samples_per_bin",
    "PROCESSING.L2_TO_L3.ZV_QUALITY_FLAG_MIN": "quality_flag_min_for_use",
    "PROCESSING.L2_TO_L3.BIN_LENGTH_WOLS_NS": "bin_length_wols_ns",
    "PROCESSING.L2_TO_L3.BIN_TIMESTAMP_POS_WOLS_NS": "bin_timestamp_pos_wols_ns",
    "PROCESSING.L2_TO_L3.BIN_BOUNDARY_REF_SECOND": "boundary_ref_second",
}


@dataclass(frozen=True)
class ProcessingSettings:
    """Frozen configuration for calibration, quality filtering and downsampling.

    Fields
    ------
    mux_modes_remove : tuple of int
        Mux modes for which records are set to fill values.
    lfr_remove_margin_s, tds_remove_margin_s : float
        Time margin (seconds) added before and after every run of records in a
        removed mux mode. Separate values for LFR and TDS sources.
    test_nso_ids_enabled : bool
        Whether test NSO identifiers in the anomaly table take effect.
    n_min_samples_per_bin : int
        Bins with fewer records give NaN science values.
    quality_flag_min_for_use : int
        Records with a lower quality flag are excluded (NaN) before downsampling.
    bin_length_wols_ns, bin_timestamp_pos_wols_ns : int
        Downsampling bin length and the position of the bin timestamp relative
        to the bin start, in nanoseconds of UTC without leap seconds.
    boundary_ref_second : int
        Bin boundaries are aligned to this UTC second of the minute of the
        first record.
    """

    mux_modes_remove: Tuple[int, ...] = (1, 2, 3, 4)
    lfr_remove_margin_s: float = 0.0
    tds_remove_margin_s: float = 0.0
    test_nso_ids_enabled: bool = False

    n_min_samples_per_bin: int = 3
    quality_flag_min_for_use: int = 2
    bin_length_wols_ns: int = 10_000_000_000
    bin_timestamp_pos_wols_ns: int = 5_000_000_000
    boundary_ref_second: int = 5

    def __post_init__(self) -> None:
        if not isinstance(self.mux_modes_remove, tuple):
            object.__setattr__(self, "mux_modes_remove", tuple(int(m) for m in self.mux_modes_remove))
        if self.bin_length_wols_ns <= 0:
            raise ValueError(f"bin_length_wols_ns must be > 0, got {self.bin_length_wols_ns}")
        if self.lfr_remove_margin_s < 0 or self.tds_remove_margin_s < 0:
            raise ValueError("Removal margins must be >= 0")
        if not 0 <= self.boundary_ref_second < 60:
            raise ValueError(f"boundary_ref_second must be in [0, 60), got {self.boundary_ref_second}")

    def remove_margin_s(self, is_lfr: bool) -> float:
        return float(self.lfr_remove_margin_s if is_lfr else self.tds_remove_margin_s)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_settings(cls, provider: Mapping[str, Any], **overrides: Any) -> ProcessingSettings:
        """Build settings from a read-only key/value provider keyed by dotted names.

        Keys absent from the provider keep their defaults. Keys not listed in
        :data:`SETTING_KEYS` raise :class:`UnknownConfigurationValueError`.
        Example::

            settings = ProcessingSettings.from_settings(
                {"PROCESSING.L2.REMOVE_DATA.MUX_MODES": [1, 2, 3]},
                test_nso_ids_enabled=True,
            )
        """
        base: Dict[str, Any] = {}
        for key, value in provider.items():
            try:
                base[SETTING_KEYS[key]] = value
            except KeyError:
                raise UnknownConfigurationValueError(f"Unknown setting key '{key}'") from None
        base.update(overrides)
        return cls.from_dict(base)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly dict (tuples become lists)."""
        d = asdict(self)
        d["mux_modes_remove"] = list(d["mux_modes_remove"])
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> ProcessingSettings:
        """Reconstruct from a dict (e.g. loaded from JSON)."""
        d = dict(d)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise UnknownConfigurationValueError(f"Unknown settings fields: {unknown}")
        if "mux_modes_remove" in d:
            d["mux_modes_remove"] = tuple(int(m) for m in d["mux_modes_remove"])
        return cls(**d)
