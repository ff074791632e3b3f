"""
Molecular concentration estimation from absorbance spectra (Beer-Lambert inversion).

Theory:
  The Beer-Lambert law relates absorbance to concentration:
    A = ε·c·l
  where:
    A: absorbance (dimensionless)
    ε: molar absorptivity (L mol^-1 cm^-1), taken from the line strength
    c: concentration (mol L^-1)
    l: optical path length (cm)

  For each reference line the spectrum samples within ±width/2 of the line
  center are averaged with a window weight w_i (Gaussian, Lorentzian or
  uniform, width = FWHM):
    Ā = Σ w_i·A_i / Σ w_i
    c = Ā / (ε·l)
  With the total pressure P and temperature T of the sample, the ideal-gas
  number density n = P / (R·T) converts c into a mixing ratio:
    ppm = c·1000 / n · 1e6
  Measurement noise is taken as the weighted standard deviation of A_i in the
  window and propagated through the same division.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from atmosense.data_models import (
    AbsorptionLine,
    ConcentrationEstimate,
    SampleConditions,
    SpectralResponse,
)
from atmosense.errors import InvalidInput
from atmosense.global_config import SpectralSettings, WindowFunction, get_spectral_settings
from atmosense.spectral_database import AbsorptionDatabase

logger = logging.getLogger(__name__)

SpectrumLike = Union[SpectralResponse, Sequence[Tuple[float, float]]]


class ConcentrationEstimator:
    """Beer-Lambert concentration estimator over an absorption-line database."""

    R_GAS = 8.314462618          # J mol^-1 K^-1
    LITERS_PER_M3 = 1000.0
    FWHM_PER_SIGMA = 2.0 * math.sqrt(2.0 * math.log(2.0))

    def __init__(self, settings: Optional[SpectralSettings] = None):
        self.settings = settings if settings is not None else get_spectral_settings()
        self.logger = logging.getLogger(__name__)

    def estimate(
        self,
        spectrum: SpectrumLike,
        database: Union[AbsorptionDatabase, Iterable[AbsorptionLine]],
        path_length: float,
        conditions: Optional[SampleConditions] = None,
        workers: Optional[int] = None,
    ) -> List[ConcentrationEstimate]:
        """
        Estimate one concentration per absorption line overlapping the spectrum.

        Args:
            spectrum: SpectralResponse or (wavelength, absorbance) pairs in ascending wavelength
            database: Reference absorption lines
            path_length: Optical path length in the unit of the line strengths (> 0)
            conditions: Sample temperature and pressure; without them estimates are uncalibrated
            workers: Thread count for evaluating lines in parallel

        Returns:
            Estimates in database order; lines without samples in their window are omitted

        Raises:
            InvalidInput: non-positive path length, empty database, bad conditions,
                          non-finite or unordered spectrum
        """
        if path_length is None or not math.isfinite(path_length) or path_length <= 0:
            raise InvalidInput(f"Path length must be a positive finite number: {path_length}")

        if not isinstance(database, AbsorptionDatabase):
            database = AbsorptionDatabase(database)
        if not database:
            raise InvalidInput("Absorption line database is empty")

        density = self._number_density(conditions)
        wavelengths, absorbances = self._spectrum_arrays(spectrum)

        def run(line):
            return self._estimate_line(line, wavelengths, absorbances, path_length, density)

        lines = database.lines
        if workers and workers > 1 and len(lines) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(run, lines))
        else:
            results = [run(line) for line in lines]

        estimates = [r for r in results if r is not None]
        self.logger.info(
            f"Estimated {len(estimates)} of {len(lines)} line(s) "
            f"({'calibrated' if density is not None else 'uncalibrated'}, window={self.settings.window.value})"
        )
        return estimates

    def _number_density(self, conditions: Optional[SampleConditions]) -> Optional[float]:
        """Total molar density (mol m^-3) from the ideal-gas law, or None when unknown."""
        if conditions is None:
            return None
        t, p = conditions.temperature_k, conditions.pressure_pa
        if not (math.isfinite(t) and t > 0):
            raise InvalidInput(f"Sample temperature must be positive kelvin: {t}")
        if not (math.isfinite(p) and p > 0):
            raise InvalidInput(f"Sample pressure must be positive pascal: {p}")
        return p / (self.R_GAS * t)

    @staticmethod
    def _spectrum_arrays(spectrum: SpectrumLike) -> Tuple[np.ndarray, np.ndarray]:
        if isinstance(spectrum, SpectralResponse):
            wl = np.asarray(spectrum.wavelengths, dtype=np.float64)
            ab = np.asarray(spectrum.absorbances, dtype=np.float64)
        else:
            pairs = np.asarray(list(spectrum), dtype=np.float64)
            if pairs.size == 0:
                return np.empty(0), np.empty(0)
            if pairs.ndim != 2 or pairs.shape[1] != 2:
                raise InvalidInput("Spectrum must be a sequence of (wavelength, absorbance) pairs")
            wl, ab = pairs[:, 0], pairs[:, 1]

        if not (np.all(np.isfinite(wl)) and np.all(np.isfinite(ab))):
            raise InvalidInput("Spectrum contains non-finite values")
        if wl.size > 1 and np.any(np.diff(wl) < 0):
            raise InvalidInput("Spectrum wavelengths must be in ascending order")
        return wl, ab

    def _weights(self, offsets: np.ndarray, width: float) -> np.ndarray:
        window = self.settings.window
        if window == WindowFunction.GAUSSIAN:
            sigma = width / self.FWHM_PER_SIGMA
            return np.exp(-0.5 * (offsets / sigma) ** 2)
        if window == WindowFunction.LORENTZIAN:
            gamma = width / 2.0
            return 1.0 / (1.0 + (offsets / gamma) ** 2)
        return np.ones_like(offsets)

    def _estimate_line(
        self,
        line: AbsorptionLine,
        wavelengths: np.ndarray,
        absorbances: np.ndarray,
        path_length: float,
        density: Optional[float],
    ) -> Optional[ConcentrationEstimate]:
        half = line.line_width / 2.0
        lo = np.searchsorted(wavelengths, line.center_wavelength - half, side='left')
        hi = np.searchsorted(wavelengths, line.center_wavelength + half, side='right')
        n = int(hi - lo)
        if n <= 0:
            self.logger.debug(f"{line.molecule} @ {line.center_wavelength}: no samples in window, omitted")
            return None

        a = absorbances[lo:hi]
        w = self._weights(wavelengths[lo:hi] - line.center_wavelength, line.line_width)
        v1 = float(np.sum(w))
        mean = float(np.sum(w * a) / v1)

        if n < 2:
            std = math.inf
        else:
            v2 = float(np.sum(w ** 2))
            # Unbiased weighted variance with reliability weights
            denom = v1 - v2 / v1
            std = math.sqrt(float(np.sum(w * (a - mean) ** 2)) / denom) if denom > 0 else math.inf

        scale = 1.0 / (line.line_strength * path_length)
        if density is not None:
            scale *= self.LITERS_PER_M3 / density * 1e6

        return ConcentrationEstimate(
            molecule=line.molecule,
            concentration_ppm=mean * scale,
            uncertainty_ppm=std * scale,
            calibrated=density is not None,
            center_wavelength=line.center_wavelength,
            sample_count=n,
            mean_absorbance=mean,
        )


def estimate_concentrations(
    spectrum: SpectrumLike,
    database: Union[AbsorptionDatabase, Iterable[AbsorptionLine]],
    path_length: float,
    conditions: Optional[SampleConditions] = None,
    settings: Optional[SpectralSettings] = None,
    workers: Optional[int] = None,
) -> List[ConcentrationEstimate]:
    """
    Invert the Beer-Lambert law for every database line overlapping the spectrum.
    """
    return ConcentrationEstimator(settings).estimate(spectrum, database, path_length, conditions, workers)


def combine_by_molecule(estimates: Iterable[ConcentrationEstimate]) -> List[ConcentrationEstimate]:
    """
    Merge per-line estimates into one estimate per molecule.

    Bounded estimates are combined by inverse-variance weighting; a molecule whose
    lines all have unbounded uncertainty gets the plain mean and stays unbounded.
    """
    grouped = {}
    for est in estimates:
        grouped.setdefault(est.molecule, []).append(est)

    combined = []
    for molecule, group in grouped.items():
        calibrated = {e.calibrated for e in group}
        if len(calibrated) > 1:
            raise InvalidInput(f"Cannot combine calibrated and uncalibrated estimates of {molecule}")

        bounded = [e for e in group if math.isfinite(e.uncertainty_ppm)]
        exact = [e for e in bounded if e.uncertainty_ppm == 0]
        if exact:
            value = sum(e.concentration_ppm for e in exact) / len(exact)
            sigma = 0.0
        elif bounded:
            weights = [1.0 / e.uncertainty_ppm ** 2 for e in bounded]
            value = sum(w * e.concentration_ppm for w, e in zip(weights, bounded)) / sum(weights)
            sigma = math.sqrt(1.0 / sum(weights))
        else:
            value = sum(e.concentration_ppm for e in group) / len(group)
            sigma = math.inf

        combined.append(ConcentrationEstimate(
            molecule=molecule,
            concentration_ppm=value,
            uncertainty_ppm=sigma,
            calibrated=calibrated.pop(),
            center_wavelength=group[0].center_wavelength if len(group) == 1 else None,
            sample_count=sum(e.sample_count for e in group),
        ))
    return combined
