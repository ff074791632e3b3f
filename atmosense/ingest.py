"""
Conversion of per-receiver epoch observations into differencing measurements.

An EpochObservation holds phase in cycles per signal; differencing needs phase
in meters, so each signal is scaled by its carrier wavelength. One signal is
kept per satellite, and across a batch every receiver uses the same signal of a
satellite at an epoch, so a double difference never mixes carrier frequencies.
"""
import logging
from typing import Dict, List, Optional, Sequence

from atmosense.data_models import EpochObservation, SatelliteState, SignalMeasurement
from atmosense.geo_utils import calculate_az_el, geometric_range, get_freq

logger = logging.getLogger(__name__)


def _usable_signals(sat_key: str, sat: SatelliteState) -> Dict[str, tuple]:
    """signal_id -> (signal, frequency, wavelength) for signals with range, phase and a known frequency."""
    usable = {}
    for sig_id, sig in sat.signals.items():
        if not sig.pseudorange or not sig.phase:
            continue
        freq, wavelength = get_freq(sig_id, sat_key, sat.fcn)
        if freq <= 0:
            continue
        usable[sig_id] = (sig, freq, wavelength)
    return usable


def _ordered(ids, preference: Optional[Sequence[str]]) -> List[str]:
    if preference is None:
        return sorted(ids)
    return [sig_id for sig_id in preference if sig_id in ids]


def _pick_signal(sat_key: str, sat: SatelliteState, preference: Optional[Sequence[str]]):
    """First usable signal in preference order (lowest signal id when no preference)."""
    usable = _usable_signals(sat_key, sat)
    for sig_id in _ordered(usable, preference):
        return usable[sig_id]
    return None


def measurements_from_epoch(
    receiver_id: str,
    epoch: EpochObservation,
    receiver_position=None,
    signal_ids: Optional[Sequence[str]] = None,
    signal_plan: Optional[Dict[str, Optional[str]]] = None,
) -> List[SignalMeasurement]:
    """
    Convert one receiver epoch into SignalMeasurement records.

    Args:
        receiver_id: Identifier of the receiver that produced the epoch
        epoch: EpochObservation with satellites and their signals
        receiver_position: Receiver ECEF [x, y, z]; enables az/el and geometric range
                           for satellites carrying sat_pos_ecef
        signal_ids: Signal ids in order of preference (e.g. ["1C", "1W"]); when None
                    the lowest signal id with usable data is taken
        signal_plan: sat_key -> signal id to use, or None to drop the satellite;
                     satellites not in the plan fall back to signal_ids

    Returns:
        One measurement per usable satellite, sorted by satellite key
    """
    measurements = []
    signal_plan = signal_plan or {}

    for sat_key in sorted(epoch.satellites):
        sat = epoch.satellites[sat_key]

        az, el = sat.azimuth, sat.elevation
        rng = None
        if sat.sat_pos_ecef is not None and receiver_position is not None:
            az_el = calculate_az_el(sat.sat_pos_ecef, receiver_position)
            if az_el is not None:
                if az is None or el is None:
                    az, el = az_el
                rng = geometric_range(sat.sat_pos_ecef, receiver_position)

        if el is None:
            logger.debug(f"[{receiver_id}] {sat_key} skipped: no elevation")
            continue

        if sat_key in signal_plan:
            planned = signal_plan[sat_key]
            picked = _usable_signals(sat_key, sat).get(planned) if planned is not None else None
            if picked is None:
                logger.debug(f"[{receiver_id}] {sat_key} skipped: shared signal {planned} not tracked")
                continue
        else:
            picked = _pick_signal(sat_key, sat, signal_ids)
            if picked is None:
                logger.debug(f"[{receiver_id}] {sat_key} skipped: no signal with range, phase and known frequency")
                continue
        sig, freq, wavelength = picked

        measurements.append(SignalMeasurement(
            receiver_id=receiver_id,
            transmitter_id=sat_key,
            timestamp=epoch.gps_time,
            pseudorange=float(sig.pseudorange),
            carrier_phase=float(sig.phase) * wavelength,
            signal_strength=float(sig.snr or 0.0),
            elevation_angle=float(el),
            azimuth_angle=float(az or 0.0),
            frequency_hz=freq,
            signal_id=sig.signal_id,
            geometric_range=rng,
        ))

    return measurements


def plan_shared_signals(
    epochs: Sequence[EpochObservation],
    signal_ids: Optional[Sequence[str]] = None,
) -> Dict[str, Optional[str]]:
    """
    Choose one signal id per satellite for epochs of several receivers at the same time.

    The signal usable by the most receivers wins, ties going to preference order
    (lowest signal id when no preference). A satellite tracked by several receivers
    with no signal in common maps to None.
    """
    tracked: Dict[str, List[set]] = {}
    for epoch in epochs:
        for sat_key, sat in epoch.satellites.items():
            usable = set(_usable_signals(sat_key, sat))
            if usable:
                tracked.setdefault(sat_key, []).append(usable)

    plan: Dict[str, Optional[str]] = {}
    for sat_key, per_receiver in tracked.items():
        candidates = _ordered(set().union(*per_receiver), signal_ids)
        if not candidates:
            plan[sat_key] = None
            continue
        counts = {sig_id: sum(sig_id in ids for ids in per_receiver) for sig_id in candidates}
        # max() keeps the first of equal counts, candidates are in preference order
        best = max(candidates, key=lambda sig_id: counts[sig_id])
        if len(per_receiver) > 1 and counts[best] < 2:
            logger.debug(f"{sat_key} dropped: no signal shared by two receivers")
            plan[sat_key] = None
        else:
            plan[sat_key] = best
    return plan


def measurements_from_epochs(receiver_epochs, receiver_positions=None,
                             signal_ids: Optional[Sequence[str]] = None) -> List[SignalMeasurement]:
    """
    Flatten {receiver_id: [EpochObservation, ...]} into one measurement batch.

    Epochs of different receivers with the same gps_time share one signal per
    satellite (see plan_shared_signals).
    """
    positions = receiver_positions or {}

    by_time: Dict[float, List[EpochObservation]] = {}
    for epochs in receiver_epochs.values():
        for epoch in epochs:
            by_time.setdefault(epoch.gps_time, []).append(epoch)
    plans = {t: plan_shared_signals(group, signal_ids) for t, group in by_time.items()}

    batch = []
    for receiver_id, epochs in receiver_epochs.items():
        for epoch in epochs:
            batch.extend(measurements_from_epoch(
                receiver_id, epoch, positions.get(receiver_id), signal_ids, plans[epoch.gps_time]
            ))
    return batch
