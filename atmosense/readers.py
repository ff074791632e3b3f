"""
CSV readers for measurement batches and absorbance spectra.

Measurement CSV columns:
  receiver_id, transmitter_id, timestamp, pseudorange, carrier_phase,
  signal_strength, elevation_angle, azimuth_angle
  optional: frequency_hz, signal_id, geometric_range

Spectrum CSV columns:
  wavelength, absorbance
"""
import csv
import logging
from pathlib import Path
from typing import List, Optional, Union

from atmosense.data_models import SignalMeasurement, SpectralResponse
from atmosense.errors import InvalidInput

logger = logging.getLogger(__name__)

MEASUREMENT_FIELDS = (
    "receiver_id", "transmitter_id", "timestamp", "pseudorange", "carrier_phase",
    "signal_strength", "elevation_angle", "azimuth_angle",
)


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    return float(value)


def _check_columns(path: Path, fieldnames, required) -> None:
    missing = [name for name in required if name not in (fieldnames or [])]
    if missing:
        raise InvalidInput(f"{path}: missing column(s) {', '.join(missing)}")


def read_measurements_csv(path: Union[str, Path]) -> List[SignalMeasurement]:
    """Read a measurement batch from CSV."""
    path = Path(path)
    measurements = []
    with open(path, newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        _check_columns(path, reader.fieldnames, MEASUREMENT_FIELDS)
        for line_no, row in enumerate(reader, start=2):
            try:
                measurements.append(SignalMeasurement(
                    receiver_id=row["receiver_id"].strip(),
                    transmitter_id=row["transmitter_id"].strip(),
                    timestamp=float(row["timestamp"]),
                    pseudorange=float(row["pseudorange"]),
                    carrier_phase=float(row["carrier_phase"]),
                    signal_strength=float(row["signal_strength"]),
                    elevation_angle=float(row["elevation_angle"]),
                    azimuth_angle=float(row["azimuth_angle"]),
                    frequency_hz=_optional_float(row.get("frequency_hz")),
                    signal_id=(row.get("signal_id") or "").strip() or None,
                    geometric_range=_optional_float(row.get("geometric_range")),
                ))
            except (TypeError, ValueError) as e:
                raise InvalidInput(f"{path}:{line_no}: {e}") from e
    logger.info(f"Read {len(measurements)} measurement(s) from {path}")
    return measurements


def read_spectrum_csv(path: Union[str, Path], sample_id: Optional[str] = None) -> SpectralResponse:
    """Read a spectrum from CSV, sorted by wavelength."""
    path = Path(path)
    pairs = []
    with open(path, newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        _check_columns(path, reader.fieldnames, ("wavelength", "absorbance"))
        for line_no, row in enumerate(reader, start=2):
            try:
                pairs.append((float(row["wavelength"]), float(row["absorbance"])))
            except (TypeError, ValueError) as e:
                raise InvalidInput(f"{path}:{line_no}: {e}") from e
    pairs.sort(key=lambda p: p[0])
    logger.info(f"Read {len(pairs)} spectral sample(s) from {path}")
    return SpectralResponse.from_pairs(pairs, sample_id or path.stem)
