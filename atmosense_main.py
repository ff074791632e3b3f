#!/usr/bin/env python3
"""
atmosense - Differential Signal & Spectral Concentration Tool
Command Line Entry Point
"""

import argparse
import logging
import sys

from atmosense.differencing import (
    compute_double_differences,
    detect_cycle_slips,
    geometry_free_jump,
    triple_difference_series,
)
from atmosense.display_info import print_concentration_table, print_differencing_report
from atmosense.errors import InvalidInput
from atmosense.global_config import (
    ReferencePolicy,
    WindowFunction,
    get_differencing_settings,
    get_spectral_settings,
    update_differencing_settings,
    update_spectral_settings,
)
from atmosense.data_models import SampleConditions
from atmosense.readers import read_measurements_csv, read_spectrum_csv
from atmosense.spectral import combine_by_molecule, estimate_concentrations
from atmosense.spectral_database import AbsorptionDatabase


def _baseline(text: str):
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 2 or not all(parts):
        raise argparse.ArgumentTypeError(f"baseline must look like RCV1,RCV2: {text!r}")
    return tuple(parts)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="atmosense", description="Double differencing and Beer-Lambert concentration estimation.")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    dd = sub.add_parser("differences", help="double differences from a measurement CSV")
    dd.add_argument("--measurements", required=True, help="measurement CSV file")
    dd.add_argument("--baseline", action="append", type=_baseline, help="receiver pair A,B (repeatable; default all pairs)")
    dd.add_argument("--elevation-mask", type=float, help="elevation mask in degrees")
    dd.add_argument("--policy", choices=[p.value for p in ReferencePolicy], help="reference transmitter policy")
    dd.add_argument("--reference", help="preferred reference transmitter id")
    dd.add_argument("--cycle-slips", action="store_true", help="also report carrier-phase cycle slips")
    dd.add_argument("--workers", type=int, default=1, help="parallel worker threads (default: %(default)s)")
    dd.add_argument("--plot", help="save a double-difference figure to this file")

    cc = sub.add_parser("concentrations", help="concentrations from an absorbance spectrum")
    cc.add_argument("--spectrum", required=True, help="spectrum CSV (wavelength, absorbance)")
    cc.add_argument("--lines", required=True, help="absorption line CSV")
    cc.add_argument("--path-length", type=float, required=True, help="optical path length")
    cc.add_argument("--temperature", type=float, help="sample temperature in K")
    cc.add_argument("--pressure", type=float, help="sample pressure in Pa")
    cc.add_argument("--window", choices=[w.value for w in WindowFunction], help="averaging window")
    cc.add_argument("--combine", action="store_true", help="one estimate per molecule")
    cc.add_argument("--workers", type=int, default=1, help="parallel worker threads (default: %(default)s)")
    cc.add_argument("--plot", help="save a spectrum figure to this file")
    return ap


def run_differences(args) -> int:
    overrides = {}
    if args.elevation_mask is not None:
        overrides['elevation_mask_deg'] = args.elevation_mask
    if args.policy:
        overrides['reference_policy'] = args.policy
    if args.reference:
        overrides['fixed_reference'] = args.reference
    if overrides:
        update_differencing_settings(overrides)

    measurements = read_measurements_csv(args.measurements)
    result = compute_double_differences(
        measurements, args.baseline, settings=get_differencing_settings(), workers=args.workers
    )
    print_differencing_report(result)

    if args.cycle_slips:
        slips = detect_cycle_slips(triple_difference_series(result))
        print(f"Cycle slips: {len(slips)}")
        for td in slips:
            print(f"  {td.baseline[0]}-{td.baseline[1]} {td.satellite_pair[0]}/{td.satellite_pair[1]} "
                  f"{td.epochs[0]} -> {td.epochs[1]}: {geometry_free_jump(td):.3f} m")

    if args.plot:
        from atmosense.plotting import plot_double_differences
        plot_double_differences(result).savefig(args.plot)
    return 0


def run_concentrations(args) -> int:
    if args.window:
        update_spectral_settings({'window': args.window})

    conditions = None
    if args.temperature is not None or args.pressure is not None:
        if args.temperature is None or args.pressure is None:
            raise InvalidInput("--temperature and --pressure must be given together")
        conditions = SampleConditions(args.temperature, args.pressure)

    spectrum = read_spectrum_csv(args.spectrum)
    database = AbsorptionDatabase.load_csv(args.lines)
    estimates = estimate_concentrations(
        spectrum, database, args.path_length, conditions,
        settings=get_spectral_settings(), workers=args.workers,
    )
    if args.combine:
        estimates = combine_by_molecule(estimates)
    print_concentration_table(estimates)

    if args.plot:
        from atmosense.plotting import plot_spectrum_fit
        plot_spectrum_fit(spectrum, database, estimates).savefig(args.plot)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        if args.command == "differences":
            return run_differences(args)
        return run_concentrations(args)
    except InvalidInput as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except FileNotFoundError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
