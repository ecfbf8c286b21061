"""
Unit conversions for IMU noise densities.

Datasheets quote white-noise levels as random-walk coefficients in
"per root hour" units; the integrator needs continuous-time power spectral
densities in SI units:

    gyro ARW   deg/√hr   -> rad/√s   -> PSD rad²/s
    accel VRW  m/s/√hr   -> m/s/√s   -> PSD m²/s³

Function names state both the input and output units.
"""

from typing import Union

import numpy as np

Numeric = Union[float, np.ndarray]

SECONDS_PER_HOUR = 3600.0


def deg_per_sqrt_hour_to_rad_per_sqrt_sec(deg_per_sqrt_hr: Numeric) -> Numeric:
    """
    Convert gyroscope angle random walk from deg/√hr to rad/√s.

    Example:
        >>> f"{deg_per_sqrt_hour_to_rad_per_sqrt_sec(0.1):.8f}"
        '0.00002909'
    """
    return np.deg2rad(deg_per_sqrt_hr) / np.sqrt(SECONDS_PER_HOUR)


def mps_per_sqrt_hour_to_mps_per_sqrt_sec(mps_per_sqrt_hr: Numeric) -> Numeric:
    """Convert accelerometer velocity random walk from m/s/√hr to m/s/√s."""
    return mps_per_sqrt_hr / np.sqrt(SECONDS_PER_HOUR)


def random_walk_to_psd(coefficient: Numeric) -> Numeric:
    """
    Continuous-time white-noise PSD from a random-walk coefficient.

    PSD = coefficient², e.g. (rad/√s)² = rad²/s for a gyro.
    """
    return np.square(coefficient)
