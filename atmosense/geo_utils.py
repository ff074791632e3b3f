"""
Geometry utilities for signal frequencies, coordinate transformations and baselines.
"""
import math
from typing import Optional, Sequence, Tuple

import numpy as np

from atmosense.data_models import CLIGHT

# WGS84 Constants
WGS84_A = 6378137.0
WGS84_E2 = 6.69437999014e-3

# Carrier frequencies by band digit of the signal id
GPS_FREQ = {"1": 1575.42e6, "2": 1227.60e6, "5": 1176.45e6, "6": 1278.75e6}
GAL_FREQ = {"1": 1575.42e6, "5": 1176.45e6, "7": 1207.14e6, "8": 1191.795e6, "6": 1278.75e6}
BDS_FREQ = {"1": 1575.42e6, "2": 1561.098e6, "5": 1176.45e6, "7": 1207.140e6, "8": 1191.795e6, "6": 1268.52e6}


def get_freq(sig_id: str, sat_key: str, fcn: int = 0) -> Tuple[float, float]:
    """
    Get frequency and wavelength based on Signal ID and Satellite Key.

    Args:
        sig_id: Signal ID (e.g., "1C", "2W")
        sat_key: Satellite Key (e.g., "G14", "R01")
        fcn: Frequency Channel Number (Required for GLONASS, -7 to +6)

    Returns:
        (frequency_Hz, wavelength_m), or (0.0, 0.0) for an unknown signal
    """
    if not sig_id or not sat_key:
        return 0.0, 0.0

    sys = sat_key[0]
    band = sig_id[0]
    freq = None

    if sys in ("G", "J"):
        freq = GPS_FREQ.get(band)
    elif sys == "E":
        freq = GAL_FREQ.get(band)
    elif sys == "C":
        freq = BDS_FREQ.get(band)
    elif sys == "R":
        # GLONASS FDMA
        if band == "1":
            freq = 1602.0e6 + 0.5625e6 * fcn
        elif band == "2":
            freq = 1246.0e6 + 0.4375e6 * fcn

    if freq is None:
        return 0.0, 0.0

    return freq, CLIGHT / freq


# -----------------------------------------------------
# Coordinate Transformations
# -----------------------------------------------------

def ecef2lla(pos: Sequence[float]) -> Tuple[float, float, float]:
    """
    Convert ECEF XYZ to geodetic latitude, longitude (radians) and height (m), WGS84.
    """
    x, y, z = float(pos[0]), float(pos[1]), float(pos[2])

    b = WGS84_A * math.sqrt(1 - WGS84_E2)
    ep = math.sqrt((WGS84_A**2 - b**2) / b**2)
    p = math.sqrt(x**2 + y**2)

    if p == 0:
        return math.copysign(math.pi / 2, z) if z else 0.0, 0.0, abs(z) - b

    th = math.atan2(WGS84_A * z, b * p)
    lon = math.atan2(y, x)
    lat = math.atan2(z + ep * ep * b * (math.sin(th)**3),
                     p - WGS84_E2 * WGS84_A * (math.cos(th)**3))

    n = WGS84_A / math.sqrt(1 - WGS84_E2 * math.sin(lat)**2)
    alt = p / math.cos(lat) - n

    return lat, lon, alt


def rot_ecef2enu(lat: float, lon: float) -> np.ndarray:
    """
    Rotation matrix from ECEF to local East-North-Up at (lat, lon) in radians.
    """
    sl = math.sin(lat)
    cl = math.cos(lat)
    slon = math.sin(lon)
    clon = math.cos(lon)

    return np.array([
        [-slon,        clon,     0.0],
        [-sl * clon, -sl * slon,  cl],
        [cl * clon,   cl * slon,  sl],
    ])


def ecef2enu(target_pos, origin_pos) -> np.ndarray:
    """
    Express target_pos as an ENU vector relative to origin_pos.
    """
    diff = np.asarray(target_pos, dtype=float) - np.asarray(origin_pos, dtype=float)
    lat, lon, _ = ecef2lla(origin_pos)
    return rot_ecef2enu(lat, lon) @ diff


def calculate_az_el(sat_ecef, rec_ecef) -> Optional[Tuple[float, float]]:
    """
    Calculate Azimuth and Elevation of a satellite seen from a receiver.

    Args:
        sat_ecef: Satellite position [x, y, z] (meters)
        rec_ecef: Receiver position [x, y, z] (meters)

    Returns:
        (Azimuth [deg], Elevation [deg]), or None if either position is unusable
    """
    if sat_ecef is None or rec_ecef is None:
        return None
    if np.all(np.asarray(rec_ecef, dtype=float) == 0):
        return None

    e, n, u = ecef2enu(sat_ecef, rec_ecef)
    rnorm = math.sqrt(e * e + n * n + u * u)
    if rnorm == 0:
        return None

    az = math.degrees(math.atan2(e, n))
    if az < 0:
        az += 360.0
    el = math.degrees(math.asin(u / rnorm))

    return az, el


def geometric_range(sat_ecef, rec_ecef) -> float:
    """Straight-line distance between satellite and receiver (meters)."""
    return float(np.linalg.norm(np.asarray(sat_ecef, dtype=float) - np.asarray(rec_ecef, dtype=float)))


def baseline_length(rec_a, rec_b) -> float:
    """Length of the baseline between two receiver ECEF positions (meters)."""
    return geometric_range(rec_a, rec_b)


def baseline_orientation(rec_a, rec_b) -> float:
    """Azimuth of receiver B seen from receiver A, degrees clockwise from north."""
    e, n, _ = ecef2enu(rec_b, rec_a)
    az = math.degrees(math.atan2(e, n))
    return az + 360.0 if az < 0 else az
