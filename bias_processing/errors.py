"""Exception types raised by the processing core.

All of them are fatal for the invocation that raised them. Aggregation of
empty or under-populated bins is *not* an error and never raises.
"""

from __future__ import annotations


class BiasProcessingError(Exception):
    """Base class for errors raised by :mod:`bias_processing`."""


class ShapeMismatchError(BiasProcessingError, ValueError):
    """Parallel arrays that must have the same number of records do not."""


class UnknownConfigurationValueError(BiasProcessingError, ValueError):
    """Unrecognized mux mode, NSO identifier or setting key.

    Signals an inconsistency between upstream data/tables and this code.
    """


class InsufficientReferenceDataError(BiasProcessingError, ValueError):
    """Not enough reference data to derive a quantity without misleading results.

    Ex: fewer than two housekeeping records when a time spacing is needed, or
    a timestamp before the first calibration epoch.
    """
