from dataclasses import replace

import pytest

from atmosense.data_models import Observable, SignalMeasurement
from atmosense.differencing import (
    compute_double_differences,
    compute_triple_differences,
    detect_cycle_slips,
    geometry_free_jump,
    group_by_epoch,
    triple_difference_series,
)
from atmosense.errors import InvalidInput
from atmosense.global_config import (
    DifferencingSettings,
    ReferencePolicy,
    update_differencing_settings,
)

L1 = 1575.42e6
L1_WAVELENGTH = 299792458.0 / L1

# Geometric ranges (m); dyadic fractions keep the sums below exact in float64
RANGES = {
    "RCV_A": {"G01": 20_100_000.25, "G02": 21_450_000.5, "G03": 22_875_000.75, "G04": 24_010_000.125},
    "RCV_B": {"G01": 20_100_350.5, "G02": 21_449_720.25, "G03": 22_875_410.625, "G04": 24_009_830.375},
}
ELEVATIONS = {"G01": 80.0, "G02": 55.0, "G03": 35.0, "G04": 20.0}


def build(ranges=RANGES, epoch=100.0, elevations=ELEVATIONS, receiver_bias=None, sat_bias=None,
          delays=None, phase_extra=None, strength=None, frequency_hz=None, timestamps=None):
    receiver_bias = receiver_bias or {}
    sat_bias = sat_bias or {}
    delays = delays or {}
    phase_extra = phase_extra or {}
    strength = strength or {}
    timestamps = timestamps or {}

    out = []
    for rec, by_sat in ranges.items():
        for sat, rho in by_sat.items():
            common = rho + receiver_bias.get(rec, 0.0) - sat_bias.get(sat, 0.0) + delays.get((rec, sat), 0.0)
            out.append(SignalMeasurement(
                receiver_id=rec,
                transmitter_id=sat,
                timestamp=timestamps.get(rec, epoch),
                pseudorange=common + 3.5,
                carrier_phase=common - 1.25 + phase_extra.get((rec, sat), 0.0),
                signal_strength=strength.get(sat, 45.0),
                elevation_angle=elevations[sat],
                azimuth_angle=120.0,
                frequency_hz=frequency_hz,
                geometric_range=rho,
            ))
    return out


def values(result, observable=Observable.PSEUDORANGE):
    return {dd.satellite_pair: dd.value for dd in result.by_observable(observable)}


def test_two_receivers_four_satellites_gives_six_records():
    result = compute_double_differences(build(), [("RCV_A", "RCV_B")])

    assert len(result) == 6
    assert result.reference[(("RCV_A", "RCV_B"), 100.0)] == "G01"
    assert {dd.satellite_pair for dd in result} == {("G01", "G02"), ("G01", "G03"), ("G01", "G04")}
    assert len(result.by_observable(Observable.PSEUDORANGE)) == 3
    assert len(result.by_observable(Observable.CARRIER_PHASE)) == 3
    assert result.excluded == []
    assert result.skipped == []
    for dd in result:
        assert dd.baseline == ("RCV_A", "RCV_B")
        assert dd.epoch == 100.0


def test_double_difference_formula():
    result = compute_double_differences(build(), [("RCV_A", "RCV_B")])
    a, b = RANGES["RCV_A"], RANGES["RCV_B"]
    expected = (a["G01"] - a["G03"]) - (b["G01"] - b["G03"])

    assert values(result)[("G01", "G03")] == pytest.approx(expected, abs=1e-9)
    assert values(result, Observable.CARRIER_PHASE)[("G01", "G03")] == pytest.approx(expected, abs=1e-9)


def test_clock_biases_cancel():
    clean = compute_double_differences(build())
    biased = compute_double_differences(build(
        receiver_bias={"RCV_A": 98_765.5, "RCV_B": -45_678.25},
        sat_bias={"G01": 1_234.125, "G02": -987.375, "G03": 42.5, "G04": 7_777.75},
    ))

    assert len(clean) == len(biased) == 6
    for observable in Observable:
        got = values(biased, observable)
        for pair, value in values(clean, observable).items():
            assert abs(got[pair] - value) <= 1e-9


def test_reference_choice_is_a_linear_recombination():
    ref1 = compute_double_differences(build(), settings=DifferencingSettings(fixed_reference="G01"))
    ref2 = compute_double_differences(build(), settings=DifferencingSettings(fixed_reference="G02"))

    assert ref1.reference[(("RCV_A", "RCV_B"), 100.0)] == "G01"
    assert ref2.reference[(("RCV_A", "RCV_B"), 100.0)] == "G02"

    for observable in Observable:
        v1 = {pair[1]: v for pair, v in values(ref1, observable).items()}
        v2 = {pair[1]: v for pair, v in values(ref2, observable).items()}
        for k in ("G03", "G04"):
            assert v1[k] - v1["G02"] == pytest.approx(v2[k], abs=1e-9)


def test_residual_isolates_differential_delay():
    delays = {("RCV_A", "G01"): 2.5, ("RCV_A", "G02"): 3.25, ("RCV_B", "G01"): 2.0, ("RCV_B", "G02"): 4.0}
    result = compute_double_differences(build(delays=delays))

    dd = next(d for d in result.by_observable(Observable.PSEUDORANGE) if d.satellite_pair == ("G01", "G02"))
    assert dd.residual == pytest.approx((2.5 - 3.25) - (2.0 - 4.0), abs=1e-9)


def test_residual_unknown_without_geometric_ranges():
    measurements = [
        SignalMeasurement(m.receiver_id, m.transmitter_id, m.timestamp, m.pseudorange, m.carrier_phase,
                          m.signal_strength, m.elevation_angle, m.azimuth_angle)
        for m in build()
    ]
    result = compute_double_differences(measurements)

    assert all(dd.geometric_value is None and dd.residual is None for dd in result)


def test_low_elevation_is_excluded_and_counted():
    elevations = dict(ELEVATIONS, G04=5.0)
    result = compute_double_differences(build(elevations=elevations))

    assert len(result) == 4
    assert "G04" not in {dd.satellite_pair[1] for dd in result}
    assert result.excluded_count == 1
    assert result.excluded[0].transmitter_id == "G04"
    assert result.excluded[0].elevation_angle == 5.0


def test_elevation_mask_from_global_settings():
    update_differencing_settings({"elevation_mask_deg": 40.0})
    result = compute_double_differences(build())

    assert len(result) == 2
    assert {e.transmitter_id for e in result.excluded} == {"G03", "G04"}


def test_insufficient_common_transmitters_yields_empty_result():
    ranges = {"RCV_A": RANGES["RCV_A"], "RCV_B": {"G01": RANGES["RCV_B"]["G01"]}}
    result = compute_double_differences(build(ranges=ranges))

    assert len(result) == 0
    assert len(result.skipped) == 1
    assert result.skipped[0].common_transmitters == 1
    assert result.skipped[0].baseline == ("RCV_A", "RCV_B")


def test_baseline_with_absent_receiver_is_skipped():
    result = compute_double_differences(build(), [("RCV_A", "RCV_B"), ("RCV_A", "RCV_Z")])

    assert len(result) == 6
    assert [s.baseline for s in result.skipped] == [("RCV_A", "RCV_Z")]
    assert result.skipped[0].common_transmitters == 0


def test_default_baselines_cover_every_receiver_pair():
    ranges = dict(RANGES, RCV_C={sat: rho + 512.0 for sat, rho in RANGES["RCV_A"].items()})
    result = compute_double_differences(build(ranges=ranges))

    assert {dd.baseline for dd in result} == {("RCV_A", "RCV_B"), ("RCV_A", "RCV_C"), ("RCV_B", "RCV_C")}
    assert len(result) == 18


def test_epochs_are_processed_independently():
    first = build(epoch=100.0)
    second = build(epoch=101.0, receiver_bias={"RCV_A": 10.0})
    combined = compute_double_differences(first + second)
    alone = compute_double_differences(first)

    grouped = group_by_epoch(combined)
    assert list(grouped) == [100.0, 101.0]
    assert grouped[100.0] == alone.double_differences
    assert combined.epochs() == [100.0, 101.0]


def test_timestamp_jitter_is_grouped_into_one_epoch():
    result = compute_double_differences(build(timestamps={"RCV_B": 100.0004}))

    assert len(result) == 6
    assert result.epochs() == [100.0]


def test_parallel_workers_match_sequential_order():
    ranges = dict(RANGES, RCV_C={sat: rho + 256.0 for sat, rho in RANGES["RCV_B"].items()})
    batch = build(ranges=ranges, epoch=10.0) + build(ranges=ranges, epoch=11.0)

    sequential = compute_double_differences(batch)
    parallel = compute_double_differences(batch, workers=4)

    assert parallel.double_differences == sequential.double_differences
    assert parallel.reference == sequential.reference


def test_signal_strength_policy_picks_strongest_transmitter():
    settings = DifferencingSettings(reference_policy=ReferencePolicy.HIGHEST_SIGNAL_STRENGTH)
    result = compute_double_differences(build(strength={"G03": 52.0}), settings=settings)

    assert result.reference[(("RCV_A", "RCV_B"), 100.0)] == "G03"


def test_unusable_fixed_reference_falls_back_to_policy():
    settings = DifferencingSettings(fixed_reference="G31")
    result = compute_double_differences(build(), settings=settings)

    assert result.reference[(("RCV_A", "RCV_B"), 100.0)] == "G01"


def test_duplicate_measurement_is_invalid():
    batch = build()
    with pytest.raises(InvalidInput):
        compute_double_differences(batch + [batch[0]])


def test_non_finite_measurement_is_invalid():
    batch = build()
    m = batch[0]
    batch[0] = SignalMeasurement(m.receiver_id, m.transmitter_id, m.timestamp, float("nan"), m.carrier_phase,
                                 m.signal_strength, m.elevation_angle, m.azimuth_angle)
    with pytest.raises(InvalidInput):
        compute_double_differences(batch)


def test_baseline_with_same_receiver_is_invalid():
    with pytest.raises(InvalidInput):
        compute_double_differences(build(), [("RCV_A", "RCV_A")])


def test_mismatched_frequencies_are_invalid():
    batch = build(frequency_hz=L1)
    idx = next(i for i, m in enumerate(batch) if m.receiver_id == "RCV_B" and m.transmitter_id == "G02")
    m = batch[idx]
    batch[idx] = SignalMeasurement(m.receiver_id, m.transmitter_id, m.timestamp, m.pseudorange, m.carrier_phase,
                                   m.signal_strength, m.elevation_angle, m.azimuth_angle, frequency_hz=1227.60e6)
    with pytest.raises(InvalidInput):
        compute_double_differences(batch)


def test_triple_difference_cancels_ambiguity():
    ambiguity = {("RCV_A", "G01"): 17 * L1_WAVELENGTH, ("RCV_A", "G02"): -4 * L1_WAVELENGTH,
                 ("RCV_B", "G01"): 230 * L1_WAVELENGTH, ("RCV_B", "G03"): 9 * L1_WAVELENGTH}
    moved = {rec: {sat: rho + 800.0 for sat, rho in by_sat.items()} for rec, by_sat in RANGES.items()}

    t1 = compute_double_differences(build(epoch=100.0, phase_extra=ambiguity))
    t2 = compute_double_differences(build(ranges=moved, epoch=101.0, phase_extra=ambiguity))
    triples = compute_triple_differences(t1, t2)

    assert len(triples) == 6
    for td in triples:
        assert td.epochs == (100.0, 101.0)
        assert td.value == pytest.approx(0.0, abs=1e-6)
    assert detect_cycle_slips(triples) == []


def test_cycle_slip_is_detected():
    slip = {("RCV_B", "G03"): L1_WAVELENGTH}
    batch = build(epoch=100.0) + build(epoch=101.0, phase_extra=slip)
    result = compute_double_differences(batch)

    triples = triple_difference_series(result)
    slips = detect_cycle_slips(triples)

    assert len(slips) == 1
    assert slips[0].satellite_pair == ("G01", "G03")
    assert slips[0].observable == Observable.CARRIER_PHASE
    assert slips[0].value == pytest.approx(L1_WAVELENGTH, abs=1e-6)
    assert detect_cycle_slips(triples, threshold=0.5) == []


MOVING = (
    {"RCV_A": {"G01": 20_000_000.0, "G02": 21_000_000.0},
     "RCV_B": {"G01": 20_000_100.0, "G02": 21_000_050.0}},
    {"RCV_A": {"G01": 20_000_700.0, "G02": 21_000_400.0},
     "RCV_B": {"G01": 20_000_800.25, "G02": 21_000_450.125}},
)


def test_moving_geometry_is_not_a_cycle_slip():
    batch = build(ranges=MOVING[0], epoch=100.0) + build(ranges=MOVING[1], epoch=101.0)
    triples = triple_difference_series(compute_double_differences(batch))

    (phase,) = [td for td in triples if td.observable == Observable.CARRIER_PHASE]
    assert phase.value == pytest.approx(-0.125)
    assert phase.geometric_value == pytest.approx(-0.125)
    assert phase.residual == pytest.approx(0.0, abs=1e-6)
    assert detect_cycle_slips(triples) == []


def test_moving_geometry_without_ranges_uses_code():
    batch = [replace(m, geometric_range=None)
             for m in build(ranges=MOVING[0], epoch=100.0) + build(ranges=MOVING[1], epoch=101.0)]
    triples = triple_difference_series(compute_double_differences(batch))

    (phase,) = [td for td in triples if td.observable == Observable.CARRIER_PHASE]
    assert phase.geometric_value is None
    assert detect_cycle_slips(triples) == []
    assert geometry_free_jump(phase) == pytest.approx(-0.125)


def test_cycle_slip_under_moving_geometry():
    slip = {("RCV_B", "G02"): L1_WAVELENGTH}
    batch = build(ranges=MOVING[0], epoch=100.0) + build(ranges=MOVING[1], epoch=101.0, phase_extra=slip)
    slips = detect_cycle_slips(triple_difference_series(compute_double_differences(batch)))

    assert len(slips) == 1
    assert slips[0].satellite_pair == ("G01", "G02")
    assert geometry_free_jump(slips[0]) == pytest.approx(L1_WAVELENGTH, abs=1e-6)
