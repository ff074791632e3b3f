"""
Exception types shared by the differencing and spectral modules.

Only caller errors are raised. Data gaps (a baseline without two common
transmitters, an absorption line without overlapping samples) are reported
inside the normal result instead.
"""


class AtmosenseError(Exception):
    """Base class for all atmosense errors."""


class InvalidInput(AtmosenseError, ValueError):
    """
    Raised when the caller passes input the computation cannot accept:
    non-positive path length, empty line database, mismatched observable
    frequencies, duplicated or non-finite measurements.
    """
