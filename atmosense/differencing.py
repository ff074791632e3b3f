"""
Double and triple differencing of multi-receiver ranging measurements.

Theory:
  A pseudorange or carrier phase (both in meters) observed by receiver r from
  transmitter s can be written as
    m_r^s = ρ_r^s + c·dt_r − c·dt^s + I_r^s + T_r^s + ε_r^s
  where:
    ρ: geometric range
    dt_r: receiver clock bias, common to every transmitter a receiver tracks
    dt^s: transmitter clock bias, common to every receiver tracking it
    I, T: ionospheric and tropospheric delay
    ε: noise and multipath

  The single difference between receivers A and B removes dt^s:
    SD^s = m_A^s − m_B^s
  and the double difference against a reference transmitter removes dt_r:
    DD^{ref,k} = SD^{ref} − SD^k
               = (m_A^ref − m_A^k) − (m_B^ref − m_B^k)
  leaving geometric and differential atmospheric delay plus noise. When the
  geometric ranges are known, DD − DD_geom isolates the atmospheric residual.

  Triple differences subtract matching double differences of two epochs,
  removing the constant carrier-phase ambiguity; a large carrier-phase triple
  difference marks a cycle slip.

Every epoch is differenced on its own; no state is carried between calls.

References:
  - GNSS Data Processing Vol. I by Sanz Subirana, Juan Zornoza & Hernández-Pajares
  - Leick, A. GPS Satellite Surveying (3rd ed.), Wiley, 2004
"""

import itertools
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from atmosense.data_models import (
    DifferencingResult,
    DoubleDifference,
    ExcludedObservation,
    Observable,
    SignalMeasurement,
    SkippedBaseline,
    TripleDifference,
)
from atmosense.errors import InvalidInput
from atmosense.global_config import (
    DifferencingSettings,
    ReferencePolicy,
    get_differencing_settings,
)

logger = logging.getLogger(__name__)

Baseline = Tuple[str, str]
# epoch -> receiver_id -> transmitter_id -> measurement
EpochTable = Dict[float, Dict[str, Dict[str, SignalMeasurement]]]


@dataclass
class _BaselineEpoch:
    """Differencing output of one baseline at one epoch."""
    double_differences: List[DoubleDifference] = field(default_factory=list)
    excluded: List[ExcludedObservation] = field(default_factory=list)
    skipped: Optional[SkippedBaseline] = None
    reference: Optional[str] = None


class DifferentialProcessor:
    """Double-difference engine over batches of signal measurements."""

    MIN_COMMON_TRANSMITTERS = 2
    FREQ_TOLERANCE_HZ = 1.0

    def __init__(self, settings: Optional[DifferencingSettings] = None):
        """
        Initialize the processor.

        Args:
            settings: Differencing settings; the global settings are used when omitted
        """
        self.settings = settings if settings is not None else get_differencing_settings()
        self.logger = logging.getLogger(__name__)

    def process(
        self,
        measurements: Iterable[SignalMeasurement],
        baseline_pairs: Optional[Sequence[Baseline]] = None,
        workers: Optional[int] = None,
    ) -> DifferencingResult:
        """
        Compute double differences for every baseline at every epoch.

        Args:
            measurements: Measurements of any number of receivers, transmitters and epochs
            baseline_pairs: Receiver pairs (A, B) to difference; all pairs when None
            workers: Thread count for processing baseline/epoch tasks in parallel

        Returns:
            DifferencingResult ordered by epoch, then baseline, then transmitter id

        Raises:
            InvalidInput: duplicated or non-finite measurements, malformed baselines,
                          or mismatched observable frequencies
        """
        table = self._group_measurements(measurements)
        receivers = sorted({rec for by_rec in table.values() for rec in by_rec})
        baselines = self._resolve_baselines(baseline_pairs, receivers)

        tasks = [(epoch, baseline) for epoch in sorted(table) for baseline in baselines]

        def run(task):
            epoch, baseline = task
            return self._difference_baseline(table[epoch], epoch, baseline)

        if workers and workers > 1 and len(tasks) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                partials = list(pool.map(run, tasks))
        else:
            partials = [run(task) for task in tasks]

        result = DifferencingResult()
        for (epoch, baseline), part in zip(tasks, partials):
            result.double_differences.extend(part.double_differences)
            result.excluded.extend(part.excluded)
            if part.skipped is not None:
                result.skipped.append(part.skipped)
            if part.reference is not None:
                result.reference[(baseline, epoch)] = part.reference

        self.logger.info(
            f"Differenced {len(table)} epoch(s) over {len(baselines)} baseline(s): "
            f"{len(result.double_differences)} double differences, "
            f"{result.excluded_count} excluded below {self.settings.elevation_mask_deg:.1f} deg, "
            f"{len(result.skipped)} baseline/epoch(s) skipped"
        )
        return result

    def _epoch_key(self, timestamp: float) -> float:
        res = self.settings.epoch_resolution
        if res <= 0:
            return float(timestamp)
        return round(round(timestamp / res) * res, 9)

    def _group_measurements(self, measurements: Iterable[SignalMeasurement]) -> EpochTable:
        """
        Index measurements by epoch, receiver and transmitter.

        Epoch keys are the timestamps snapped to the configured resolution so that
        receivers reporting the same epoch with tiny timing jitter are grouped together.
        """
        table: EpochTable = {}
        for m in measurements:
            for name in ("timestamp", "pseudorange", "carrier_phase", "elevation_angle"):
                value = getattr(m, name)
                if value is None or not math.isfinite(value):
                    raise InvalidInput(
                        f"Measurement {m.receiver_id}/{m.transmitter_id} has non-finite {name}: {value}"
                    )
            epoch = self._epoch_key(m.timestamp)
            by_tx = table.setdefault(epoch, {}).setdefault(m.receiver_id, {})
            if m.transmitter_id in by_tx:
                raise InvalidInput(
                    f"Duplicate measurement of {m.transmitter_id} by {m.receiver_id} at epoch {epoch}"
                )
            by_tx[m.transmitter_id] = m
        return table

    @staticmethod
    def _resolve_baselines(baseline_pairs: Optional[Sequence[Baseline]], receivers: List[str]) -> List[Baseline]:
        if baseline_pairs is None:
            return list(itertools.combinations(receivers, 2))

        baselines: List[Baseline] = []
        for pair in baseline_pairs:
            if len(pair) != 2:
                raise InvalidInput(f"Baseline must name exactly two receivers: {pair!r}")
            rec_a, rec_b = pair
            if rec_a == rec_b:
                raise InvalidInput(f"Baseline uses the same receiver twice: {rec_a}")
            baseline = (rec_a, rec_b)
            if baseline not in baselines:
                baselines.append(baseline)
        return baselines

    def _difference_baseline(self, epoch_data, epoch: float, baseline: Baseline) -> _BaselineEpoch:
        """
        Double differences of one baseline at one epoch.

        Filters by:
          - Transmitter tracked by both receivers
          - Lower of the two elevations >= elevation mask
        """
        out = _BaselineEpoch()
        rec_a, rec_b = baseline
        obs_a = epoch_data.get(rec_a, {})
        obs_b = epoch_data.get(rec_b, {})

        usable = []
        for tx in sorted(set(obs_a) & set(obs_b)):
            el = min(obs_a[tx].elevation_angle, obs_b[tx].elevation_angle)
            if el < self.settings.elevation_mask_deg:
                out.excluded.append(ExcludedObservation(baseline, tx, epoch, el))
            else:
                usable.append(tx)

        for item in out.excluded:
            self.logger.debug(
                f"[{rec_a}-{rec_b} @ {epoch}] {item.transmitter_id} excluded, elevation {item.elevation_angle:.1f} deg"
            )

        if len(usable) < self.MIN_COMMON_TRANSMITTERS:
            self.logger.debug(
                f"[{rec_a}-{rec_b} @ {epoch}] Insufficient common transmitters: {len(usable)}"
            )
            out.skipped = SkippedBaseline(baseline, epoch, len(usable))
            return out

        ref = self._select_reference(usable, obs_a, obs_b)
        out.reference = ref

        for other in usable:
            if other == ref:
                continue
            quad = (obs_a[ref], obs_a[other], obs_b[ref], obs_b[other])
            self._check_frequencies(quad, baseline, epoch)

            geom = None
            if all(m.geometric_range is not None for m in quad):
                geom = self._combine(*(m.geometric_range for m in quad))

            out.double_differences.append(DoubleDifference(
                baseline=baseline,
                satellite_pair=(ref, other),
                epoch=epoch,
                observable=Observable.PSEUDORANGE,
                value=self._combine(*(m.pseudorange for m in quad)),
                geometric_value=geom,
            ))
            out.double_differences.append(DoubleDifference(
                baseline=baseline,
                satellite_pair=(ref, other),
                epoch=epoch,
                observable=Observable.CARRIER_PHASE,
                value=self._combine(*(m.carrier_phase for m in quad)),
                geometric_value=geom,
            ))

        return out

    @staticmethod
    def _combine(a_ref: float, a_other: float, b_ref: float, b_other: float) -> float:
        # (A_ref - A_other) - (B_ref - B_other)
        return (float(a_ref) - float(a_other)) - (float(b_ref) - float(b_other))

    def _select_reference(self, usable: List[str], obs_a, obs_b) -> str:
        """
        Pick the reference transmitter of a baseline/epoch.

        A usable fixed reference wins; otherwise the configured policy decides and
        remaining ties go to the lowest transmitter id.
        """
        fixed = self.settings.fixed_reference
        if fixed is not None and fixed in usable:
            return fixed

        def elevation(tx):
            return min(obs_a[tx].elevation_angle, obs_b[tx].elevation_angle)

        def strength(tx):
            return 0.5 * (obs_a[tx].signal_strength + obs_b[tx].signal_strength)

        if self.settings.reference_policy == ReferencePolicy.HIGHEST_SIGNAL_STRENGTH:
            key = lambda tx: (strength(tx), elevation(tx))
        else:
            key = lambda tx: (elevation(tx), strength(tx))

        # max() keeps the first of equal keys, usable is sorted by id
        return max(usable, key=key)

    def _check_frequencies(self, quad, baseline: Baseline, epoch: float) -> None:
        """Both receivers must observe each transmitter on the same carrier frequency."""
        a_ref, a_other, b_ref, b_other = quad
        for m_a, m_b in ((a_ref, b_ref), (a_other, b_other)):
            if not m_a.frequency_hz or not m_b.frequency_hz:
                continue
            if abs(m_a.frequency_hz - m_b.frequency_hz) > self.FREQ_TOLERANCE_HZ:
                raise InvalidInput(
                    f"Mismatched signal frequencies on {baseline[0]}-{baseline[1]} {m_a.transmitter_id} "
                    f"at epoch {epoch}: {m_a.frequency_hz:.0f}, {m_b.frequency_hz:.0f}"
                )


def compute_double_differences(
    measurements: Iterable[SignalMeasurement],
    baseline_pairs: Optional[Sequence[Baseline]] = None,
    settings: Optional[DifferencingSettings] = None,
    workers: Optional[int] = None,
) -> DifferencingResult:
    """
    Compute pseudorange and carrier-phase double differences.

    Baselines with fewer than two common transmitters above the elevation mask at
    an epoch produce no differences and are listed in DifferencingResult.skipped.
    """
    return DifferentialProcessor(settings).process(measurements, baseline_pairs, workers)


def group_by_epoch(double_differences: Iterable[DoubleDifference]) -> Dict[float, List[DoubleDifference]]:
    """Split double differences by epoch, epochs in ascending order."""
    grouped: Dict[float, List[DoubleDifference]] = {}
    for dd in sorted(double_differences, key=lambda d: d.epoch):
        grouped.setdefault(dd.epoch, []).append(dd)
    return grouped


def compute_triple_differences(
    earlier: Iterable[DoubleDifference],
    later: Iterable[DoubleDifference],
) -> List[TripleDifference]:
    """
    Difference matching double differences of two epochs (later − earlier).

    Double differences match when baseline, satellite pair and observable agree;
    a change of reference transmitter between the epochs leaves those pairs unmatched.
    """
    index = {(dd.baseline, dd.satellite_pair, dd.observable): dd for dd in earlier}
    triples = []
    for dd in later:
        prev = index.get((dd.baseline, dd.satellite_pair, dd.observable))
        if prev is None:
            continue
        geom = None
        if dd.geometric_value is not None and prev.geometric_value is not None:
            geom = dd.geometric_value - prev.geometric_value
        triples.append(TripleDifference(
            baseline=dd.baseline,
            satellite_pair=dd.satellite_pair,
            epochs=(prev.epoch, dd.epoch),
            observable=dd.observable,
            value=dd.value - prev.value,
            geometric_value=geom,
        ))
    return triples


def triple_difference_series(double_differences: Iterable[DoubleDifference]) -> List[TripleDifference]:
    """Triple differences between every pair of consecutive epochs of a batch."""
    grouped = group_by_epoch(double_differences)
    epochs = list(grouped)
    triples = []
    for prev_epoch, next_epoch in zip(epochs, epochs[1:]):
        triples.extend(compute_triple_differences(grouped[prev_epoch], grouped[next_epoch]))
    return triples


def detect_cycle_slips(
    triple_differences: Iterable[TripleDifference],
    threshold: Optional[float] = None,
    settings: Optional[DifferencingSettings] = None,
) -> List[TripleDifference]:
    """
    Return carrier-phase triple differences whose geometry-free jump exceeds the threshold (meters).

    The jump is the triple difference minus its change in geometry when the
    geometric ranges are known; otherwise the matching pseudorange triple
    difference is subtracted (phase minus code). Without either the raw value is used.
    """
    if threshold is None:
        settings = settings if settings is not None else get_differencing_settings()
        threshold = settings.cycle_slip_threshold_m

    triple_differences = list(triple_differences)
    code = {
        (td.baseline, td.satellite_pair, td.epochs): td.value
        for td in triple_differences if td.observable == Observable.PSEUDORANGE
    }

    slips = []
    for td in triple_differences:
        if td.observable != Observable.CARRIER_PHASE:
            continue
        jump = geometry_free_jump(td, code.get((td.baseline, td.satellite_pair, td.epochs)))
        if abs(jump) > threshold:
            logger.info(
                f"Cycle slip on {td.baseline[0]}-{td.baseline[1]} {td.satellite_pair[0]}/{td.satellite_pair[1]} "
                f"between {td.epochs[0]} and {td.epochs[1]}: {jump:.3f} m"
            )
            slips.append(td)
    return slips


def geometry_free_jump(td: TripleDifference, code_value: Optional[float] = None) -> float:
    """Carrier-phase triple difference with the geometry (or the code triple difference) removed."""
    if td.residual is not None:
        return td.residual
    if code_value is not None:
        return td.value - code_value
    return td.value
