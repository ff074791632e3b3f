"""
Figures for differencing and spectral results.

Figures are built with matplotlib's object API (no pyplot state) so they can be
embedded in a canvas or saved from worker threads.
"""
from typing import Iterable, Optional

import numpy as np
from matplotlib.figure import Figure

from atmosense.data_models import ConcentrationEstimate, DifferencingResult, Observable, SpectralResponse
from atmosense.spectral_database import AbsorptionDatabase


def plot_double_differences(result: DifferencingResult,
                            observable: Observable = Observable.CARRIER_PHASE,
                            use_residual: bool = False) -> Figure:
    """
    Time series of double differences, one line per baseline and satellite pair.
    """
    fig = Figure(figsize=(10, 4), dpi=100)
    ax = fig.add_subplot(111)

    series = {}
    for dd in result.by_observable(observable):
        y = dd.residual if use_residual else dd.value
        if y is None:
            continue
        key = f"{dd.baseline[0]}-{dd.baseline[1]} {dd.satellite_pair[0]}/{dd.satellite_pair[1]}"
        series.setdefault(key, []).append((dd.epoch, y))

    for key, points in series.items():
        points.sort()
        x, y = zip(*points)
        ax.plot(x, y, marker='.', label=key)

    ax.set_xlabel('Epoch (s)')
    ax.set_ylabel(('DD residual' if use_residual else 'DD') + ' (m)')
    ax.set_title(f'Double Differences ({observable.value})')
    ax.grid(True, alpha=0.3)
    ax.axhline(y=0, color='k', linestyle='-', linewidth=0.5)
    if series:
        ax.legend(loc='upper right', fontsize='small')

    fig.tight_layout()
    return fig


def plot_spectrum_fit(spectrum: SpectralResponse,
                      database: AbsorptionDatabase,
                      estimates: Optional[Iterable[ConcentrationEstimate]] = None) -> Figure:
    """
    Absorbance spectrum with each database line window shaded.

    Windows of lines that produced an estimate are labelled with its concentration.
    """
    fig = Figure(figsize=(10, 4), dpi=100)
    ax = fig.add_subplot(111)

    wl = np.asarray(spectrum.wavelengths, dtype=float)
    ab = np.asarray(spectrum.absorbances, dtype=float)
    ax.plot(wl, ab, color='blue', linewidth=1.0, label='Absorbance')

    found = {(e.molecule, e.center_wavelength): e for e in (estimates or [])}
    for line in database:
        half = line.line_width / 2.0
        est = found.get((line.molecule, line.center_wavelength))
        color = 'green' if est is not None else 'gray'
        ax.axvspan(line.center_wavelength - half, line.center_wavelength + half, alpha=0.2, color=color)
        if est is not None:
            unit = 'ppm' if est.calibrated else ''
            ax.annotate(f"{line.molecule} {est.concentration_ppm:.3g}{unit}",
                        xy=(line.center_wavelength, est.mean_absorbance or 0.0),
                        fontsize='small', ha='center', va='bottom')

    ax.set_xlabel('Wavelength')
    ax.set_ylabel('Absorbance')
    ax.set_title(spectrum.sample_id or 'Spectral Response')
    ax.grid(True, alpha=0.3)
    ax.legend(loc='upper right')

    fig.tight_layout()
    return fig
