from atmosense.data_models import Observable


def print_differencing_header(result):
    print("=" * 78)
    print(f" EPOCHS      : {len(result.epochs())}")
    print(f" DOUBLE DIFF : {len(result.double_differences)}")
    print(f" EXCLUDED    : {result.excluded_count}")
    print(f" SKIPPED     : {len(result.skipped)}")
    print("-" * 78)


def group_by_baseline(result):
    by_baseline = {}
    for dd in result.double_differences:
        by_baseline.setdefault(dd.baseline, []).append(dd)
    return by_baseline


def print_baseline_block(baseline, dds):
    print(f"\n [{baseline[0]} - {baseline[1]}] ({len(dds)} records)\n")
    print("  Epoch          Ref    Sat    |  Observable     |       Value(m)      Residual(m)")
    print(" ------------------------------------------------------------------------------")

    for dd in dds:
        obs = "code" if dd.observable == Observable.PSEUDORANGE else "phase"
        res = f"{dd.residual:14.4f}" if dd.residual is not None else "           N/A"
        print(f"  {dd.epoch:<13.3f}  {dd.satellite_pair[0]:<5}  {dd.satellite_pair[1]:<5}  |  {obs:<13}  |  "
              f"{dd.value:14.4f}  {res}")

    return len(dds)


def print_differencing_footer(result):
    for item in result.excluded:
        print(f"  excluded: {item.baseline[0]}-{item.baseline[1]} {item.transmitter_id} "
              f"@ {item.epoch} (el {item.elevation_angle:.1f})")
    for item in result.skipped:
        print(f"  skipped : {item.baseline[0]}-{item.baseline[1]} @ {item.epoch} "
              f"({item.common_transmitters} usable common transmitter(s))")
    print("=" * 78 + "\n")


def print_differencing_report(result):
    print_differencing_header(result)
    total = 0
    for baseline, dds in group_by_baseline(result).items():
        total += print_baseline_block(baseline, dds)
    print_differencing_footer(result)
    return total


def print_concentration_table(estimates):
    print("=" * 78)
    print("  Molecule   Center     Samples  |  Concentration     Uncertainty   Unit")
    print(" ------------------------------------------------------------------------------")

    for est in estimates:
        center = f"{est.center_wavelength:8.2f}" if est.center_wavelength is not None else "     N/A"
        unc = "       unbounded" if est.unbounded_uncertainty else f"{est.uncertainty_ppm:16.6g}"
        unit = "ppm" if est.calibrated else "A/(e*l)"
        print(f"  {est.molecule:<9}  {center}   {est.sample_count:7d}  |  {est.concentration_ppm:14.6g}  {unc}   {unit}")

    print("=" * 78 + "\n")
    return len(estimates)
