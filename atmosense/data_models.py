"""
Data models for signal measurements, differencing products and spectral estimates.
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from atmosense.errors import InvalidInput

CLIGHT = 299792458.0  # Speed of light (m/s)


# -----------------------------------------------------
# Receiver stream containers
# -----------------------------------------------------

@dataclass
class SignalData:
    """
    Holds observation data for a specific frequency/signal.
    """
    signal_id: str        # e.g., "1C", "2W"
    snr: float            # dB-Hz
    phase: float          # cycles
    pseudorange: float    # meters
    lock_time: int = 0
    doppler: float = 0.0


@dataclass
class SatelliteState:
    """
    Represents the state of a single satellite at a specific epoch.
    """
    sys_id: str           # 'G', 'E', 'C', 'R'
    prn: int              # Satellite ID

    azimuth: Optional[float] = None    # Degrees (0-360)
    elevation: Optional[float] = None  # Degrees (-90 to 90)
    sat_pos_ecef: Optional[list] = None  # [x, y, z]
    fcn: int = 0                       # GLONASS frequency channel

    # Key is signal_id (e.g., "1C")
    signals: Dict[str, SignalData] = field(default_factory=dict)


@dataclass
class EpochObservation:
    """
    Container for all data in a single time epoch of one receiver.
    """
    gps_time: float       # GPS Time of Week (seconds)
    satellites: Dict[str, SatelliteState] = field(default_factory=dict)


# -----------------------------------------------------
# Differential processing
# -----------------------------------------------------

class Observable(Enum):
    """Observable a double difference was formed from."""
    PSEUDORANGE = "pseudorange"
    CARRIER_PHASE = "carrier_phase"


@dataclass(frozen=True)
class SignalMeasurement:
    """
    One observation of a ranging signal at one receiver and one timestamp.

    Pseudorange and carrier phase are both in meters; frequency_hz is the
    nominal carrier both were tracked on.
    """
    receiver_id: str
    transmitter_id: str
    timestamp: float          # seconds
    pseudorange: float        # meters
    carrier_phase: float      # meters
    signal_strength: float    # C/N0, dB-Hz
    elevation_angle: float    # degrees
    azimuth_angle: float      # degrees
    frequency_hz: Optional[float] = None
    signal_id: Optional[str] = None
    geometric_range: Optional[float] = None  # meters, receiver to transmitter

    @property
    def wavelength(self) -> Optional[float]:
        if not self.frequency_hz:
            return None
        return CLIGHT / self.frequency_hz

    @property
    def carrier_phase_cycles(self) -> Optional[float]:
        """Carrier phase in cycles, or None if the frequency is unknown."""
        wl = self.wavelength
        if wl is None:
            return None
        return self.carrier_phase / wl

    @classmethod
    def from_phase_cycles(cls, receiver_id: str, transmitter_id: str, timestamp: float,
                          pseudorange: float, phase_cycles: float, frequency_hz: float,
                          signal_strength: float, elevation_angle: float,
                          azimuth_angle: float, **kwargs) -> "SignalMeasurement":
        """Build a measurement from a phase given in cycles of frequency_hz."""
        return cls(
            receiver_id=receiver_id,
            transmitter_id=transmitter_id,
            timestamp=timestamp,
            pseudorange=pseudorange,
            carrier_phase=phase_cycles * CLIGHT / frequency_hz,
            signal_strength=signal_strength,
            elevation_angle=elevation_angle,
            azimuth_angle=azimuth_angle,
            frequency_hz=frequency_hz,
            **kwargs,
        )


@dataclass(frozen=True)
class DoubleDifference:
    """
    Receiver-pair x transmitter-pair difference of one observable at one epoch.

    value = (m[A, ref] - m[A, other]) - (m[B, ref] - m[B, other])
    where baseline = (A, B) and satellite_pair = (ref, other).
    """
    baseline: Tuple[str, str]
    satellite_pair: Tuple[str, str]
    epoch: float
    observable: Observable
    value: float
    geometric_value: Optional[float] = None

    @property
    def residual(self) -> Optional[float]:
        """Value with the geometric double difference removed, if known."""
        if self.geometric_value is None:
            return None
        return self.value - self.geometric_value


@dataclass(frozen=True)
class TripleDifference:
    """Between-epoch difference of two matching double differences."""
    baseline: Tuple[str, str]
    satellite_pair: Tuple[str, str]
    epochs: Tuple[float, float]  # (earlier, later)
    observable: Observable
    value: float
    geometric_value: Optional[float] = None  # change of the geometric double difference

    @property
    def residual(self) -> Optional[float]:
        """Value with the change in geometry removed, if known."""
        if self.geometric_value is None:
            return None
        return self.value - self.geometric_value


@dataclass(frozen=True)
class ExcludedObservation:
    """A common transmitter dropped from a baseline by the elevation mask."""
    baseline: Tuple[str, str]
    transmitter_id: str
    epoch: float
    elevation_angle: float  # lower of the two receivers' elevations


@dataclass(frozen=True)
class SkippedBaseline:
    """A baseline/epoch with fewer than two usable common transmitters."""
    baseline: Tuple[str, str]
    epoch: float
    common_transmitters: int


@dataclass
class DifferencingResult:
    """
    Output of one double-differencing call.

    Iterating the result yields the double differences; excluded and skipped
    entries are kept alongside so nothing disappears unaccounted.
    """
    double_differences: List[DoubleDifference] = field(default_factory=list)
    excluded: List[ExcludedObservation] = field(default_factory=list)
    skipped: List[SkippedBaseline] = field(default_factory=list)
    # (baseline, epoch) -> reference transmitter
    reference: Dict[Tuple[Tuple[str, str], float], str] = field(default_factory=dict)

    def __iter__(self) -> Iterator[DoubleDifference]:
        return iter(self.double_differences)

    def __len__(self) -> int:
        return len(self.double_differences)

    @property
    def excluded_count(self) -> int:
        return len(self.excluded)

    def by_observable(self, observable: Observable) -> List[DoubleDifference]:
        return [dd for dd in self.double_differences if dd.observable == observable]

    def epochs(self) -> List[float]:
        return sorted({dd.epoch for dd in self.double_differences})


# -----------------------------------------------------
# Spectral analysis
# -----------------------------------------------------

@dataclass(frozen=True)
class AbsorptionLine:
    """
    Reference absorption feature.

    line_strength is used directly as the molar absorptivity
    (L mol^-1 cm^-1); line_width is the full width of the feature in the
    wavelength unit of the spectrum.
    """
    molecule: str
    center_wavelength: float
    line_strength: float
    line_width: float


@dataclass(frozen=True)
class SpectralSample:
    wavelength: float
    absorbance: float


@dataclass(frozen=True)
class SpectralResponse:
    """Measured absorbance per wavelength bin for one sample, ordered by wavelength."""
    samples: Tuple[SpectralSample, ...]
    sample_id: Optional[str] = None

    @classmethod
    def from_pairs(cls, pairs: Sequence[Tuple[float, float]], sample_id: Optional[str] = None):
        return cls(tuple(SpectralSample(float(w), float(a)) for w, a in pairs), sample_id)

    @classmethod
    def from_arrays(cls, wavelengths, absorbances, sample_id: Optional[str] = None):
        if len(wavelengths) != len(absorbances):
            raise InvalidInput(
                f"wavelengths and absorbances differ in length: {len(wavelengths)} != {len(absorbances)}"
            )
        return cls.from_pairs(list(zip(wavelengths, absorbances)), sample_id)

    @property
    def wavelengths(self) -> List[float]:
        return [s.wavelength for s in self.samples]

    @property
    def absorbances(self) -> List[float]:
        return [s.absorbance for s in self.samples]

    def __len__(self) -> int:
        return len(self.samples)


@dataclass(frozen=True)
class SampleConditions:
    """Total pressure and temperature of the sampled gas."""
    temperature_k: float
    pressure_pa: float


@dataclass(frozen=True)
class ConcentrationEstimate:
    """
    Concentration derived from one absorption line (or a combination of lines).

    When calibrated is False the concentration fields hold the
    absorbance-normalized value A / (epsilon * l) instead of ppm.
    """
    molecule: str
    concentration_ppm: float
    uncertainty_ppm: float
    calibrated: bool
    center_wavelength: Optional[float] = None
    sample_count: int = 0
    mean_absorbance: Optional[float] = None

    @property
    def unbounded_uncertainty(self) -> bool:
        return math.isinf(self.uncertainty_ppm)
