"""
atmosense - differential signal processing and spectral concentration estimation.
"""

from atmosense.data_models import (
    AbsorptionLine,
    ConcentrationEstimate,
    DifferencingResult,
    DoubleDifference,
    EpochObservation,
    ExcludedObservation,
    Observable,
    SampleConditions,
    SatelliteState,
    SignalData,
    SignalMeasurement,
    SkippedBaseline,
    SpectralResponse,
    SpectralSample,
    TripleDifference,
)
from atmosense.differencing import (
    DifferentialProcessor,
    compute_double_differences,
    compute_triple_differences,
    detect_cycle_slips,
    geometry_free_jump,
    triple_difference_series,
)
from atmosense.errors import AtmosenseError, InvalidInput
from atmosense.global_config import DifferencingSettings, ReferencePolicy, SpectralSettings, WindowFunction
from atmosense.ingest import measurements_from_epoch, measurements_from_epochs
from atmosense.spectral import ConcentrationEstimator, combine_by_molecule, estimate_concentrations
from atmosense.spectral_database import AbsorptionDatabase

__version__ = "0.1.0"

__all__ = [
    "AbsorptionDatabase",
    "AbsorptionLine",
    "AtmosenseError",
    "ConcentrationEstimate",
    "ConcentrationEstimator",
    "DifferencingResult",
    "DifferencingSettings",
    "DifferentialProcessor",
    "DoubleDifference",
    "EpochObservation",
    "ExcludedObservation",
    "InvalidInput",
    "Observable",
    "ReferencePolicy",
    "SampleConditions",
    "SatelliteState",
    "SignalData",
    "SignalMeasurement",
    "SkippedBaseline",
    "SpectralResponse",
    "SpectralSample",
    "SpectralSettings",
    "TripleDifference",
    "WindowFunction",
    "combine_by_molecule",
    "compute_double_differences",
    "compute_triple_differences",
    "detect_cycle_slips",
    "geometry_free_jump",
    "estimate_concentrations",
    "measurements_from_epoch",
    "measurements_from_epochs",
    "triple_difference_series",
]
