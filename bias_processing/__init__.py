"""BIAS processing -- calibration, demultiplexing and downsampling of antenna bias telemetry.

This package provides tools for:
- Splitting records into segments with constant instrument configuration
- Routing the five BLTS channels to antenna signals (ASRs) per mux mode
- Calibrating voltages and currents through a pluggable calibration engine
- Applying quality flags, NSO events and use-fill-value rules
- Downsampling into leap-second-aware UTC time bins (median + spread)

Key principles:
- Pure functions over immutable arrays; no state carried between segments or bins
- Configuration errors fail fast; empty or sparse bins are not errors
- No I/O: file formats, CLI and settings files live outside this package

Main subpackages:
- models: Data models (RecordSequence, AsrSamples, CalibratedRecords, ProcessingSettings)
- processing: Segmentation, demultiplexer, calibration, quality, downsampling, pipeline
"""

__all__ = []
