"""
Configuration and bias types for IMU preintegration.

This module defines the read-only inputs shared by every integration window:
    - FrameConvention: navigation frame (ENU / NED) and its gravity direction
    - ImuNoiseDensities: white-noise random-walk coefficients with explicit units
    - PreintegrationParams: continuous-time noise covariances and gravity
    - ImuBias: accelerometer and gyroscope offsets subtracted from raw samples

All types are frozen dataclasses validated in __post_init__. A single
PreintegrationParams instance is meant to be shared by reference across many
AggregateImuReadings instances; none of them writes to it.

Frame Conventions:
    - B: Body frame (IMU frame); biases and samples are expressed in B
    - N: Navigation frame; gravity is expressed in N
"""

import json
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal, Union

import numpy as np

from imu_preintegration.navigation.units import (
    deg_per_sqrt_hour_to_rad_per_sqrt_sec,
    mps_per_sqrt_hour_to_mps_per_sqrt_sec,
    random_walk_to_psd,
)


STANDARD_GRAVITY = 9.80665  # m/s²


def _frozen_array(value: Any, shape: tuple, name: str) -> np.ndarray:
    arr = np.array(value, dtype=np.float64)
    if arr.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} must contain only finite values")
    arr.setflags(write=False)
    return arr


def _check_covariance3(cov: np.ndarray, name: str) -> None:
    if not np.allclose(cov, cov.T):
        raise ValueError(f"{name} must be symmetric")
    eigvals = np.linalg.eigvalsh(cov)
    if np.any(eigvals < -1e-12):
        raise ValueError(
            f"{name} must be positive semi-definite, got eigenvalues {eigvals}"
        )


@dataclass(frozen=True)
class FrameConvention:
    """
    Navigation frame definition used to place gravity.

    Attributes:
        map_frame: 'ENU' (East-North-Up, gravity along -z) or
                   'NED' (North-East-Down, gravity along +z).

    Example:
        >>> FrameConvention.create_ned().gravity_vector(9.81)
        array([0.  , 0.  , 9.81])
    """

    map_frame: Literal['ENU', 'NED'] = 'ENU'

    def __post_init__(self) -> None:
        if self.map_frame not in ('ENU', 'NED'):
            raise ValueError(
                f"map_frame must be 'ENU' or 'NED', got '{self.map_frame}'"
            )

    @classmethod
    def create_enu(cls) -> "FrameConvention":
        return cls(map_frame='ENU')

    @classmethod
    def create_ned(cls) -> "FrameConvention":
        return cls(map_frame='NED')

    @property
    def gravity_direction(self) -> int:
        """Sign of the z-component of gravity in the navigation frame."""
        return -1 if self.map_frame == 'ENU' else +1

    def gravity_vector(self, g_mag: float = STANDARD_GRAVITY) -> np.ndarray:
        """Gravity in the navigation frame, shape (3,). Units: m/s²."""
        return np.array([0.0, 0.0, self.gravity_direction * g_mag])


@dataclass(frozen=True)
class ImuNoiseDensities:
    """
    White-noise levels of an IMU with units in the field names.

    Attributes:
        gyro_arw_rad_sqrt_s: Gyroscope angle random walk (rad/√s).
        accel_vrw_mps_sqrt_s: Accelerometer velocity random walk (m/s/√s).
        grade: Free-form label ('consumer', 'tactical', ...).

    Example:
        >>> noise = ImuNoiseDensities.from_datasheet(
        ...     gyro_arw_deg_sqrt_hr=0.1, accel_vrw_mps_sqrt_hr=0.01)
        >>> f"{noise.gyro_arw_rad_sqrt_s:.8f}"
        '0.00002909'
    """

    gyro_arw_rad_sqrt_s: float
    accel_vrw_mps_sqrt_s: float
    grade: str = 'unknown'

    def __post_init__(self) -> None:
        if self.gyro_arw_rad_sqrt_s < 0 or self.accel_vrw_mps_sqrt_s < 0:
            raise ValueError(
                "Noise densities must be non-negative, got "
                f"ARW={self.gyro_arw_rad_sqrt_s}, VRW={self.accel_vrw_mps_sqrt_s}"
            )

    @classmethod
    def from_datasheet(
        cls,
        gyro_arw_deg_sqrt_hr: float,
        accel_vrw_mps_sqrt_hr: float,
        grade: str = 'unknown',
    ) -> "ImuNoiseDensities":
        """Build from the "per root hour" values printed in datasheets."""
        return cls(
            gyro_arw_rad_sqrt_s=float(
                deg_per_sqrt_hour_to_rad_per_sqrt_sec(gyro_arw_deg_sqrt_hr)
            ),
            accel_vrw_mps_sqrt_s=float(
                mps_per_sqrt_hour_to_mps_per_sqrt_sec(accel_vrw_mps_sqrt_hr)
            ),
            grade=grade,
        )

    @classmethod
    def consumer_grade(cls) -> "ImuNoiseDensities":
        """Typical smartphone-class MEMS IMU."""
        return cls.from_datasheet(0.1, 0.01, grade='consumer')

    @classmethod
    def tactical_grade(cls) -> "ImuNoiseDensities":
        """Typical tactical-grade MEMS / FOG IMU."""
        return cls.from_datasheet(0.01, 0.001, grade='tactical')


@dataclass(frozen=True)
class PreintegrationParams:
    """
    Shared, read-only parameters of IMU preintegration.

    Attributes:
        accelerometer_covariance: Continuous-time accelerometer white-noise
            spectral density, shape (3, 3). Units: m²/s³.
        gyroscope_covariance: Continuous-time gyroscope white-noise spectral
            density, shape (3, 3). Units: rad²/s.
        n_gravity: Gravity vector in the navigation frame, shape (3,).
            Units: m/s².

    Notes:
        - The integrator converts the densities to per-step covariances by
          dividing by the sample interval dt.
        - Arrays are stored as read-only float64 copies.

    Example:
        >>> params = PreintegrationParams.make_shared_u(9.81)
        >>> params.n_gravity
        array([ 0.  ,  0.  , -9.81])
    """

    accelerometer_covariance: np.ndarray
    gyroscope_covariance: np.ndarray
    n_gravity: np.ndarray

    def __post_init__(self) -> None:
        acc = _frozen_array(self.accelerometer_covariance, (3, 3),
                            "accelerometer_covariance")
        gyro = _frozen_array(self.gyroscope_covariance, (3, 3),
                             "gyroscope_covariance")
        gravity = _frozen_array(self.n_gravity, (3,), "n_gravity")

        _check_covariance3(acc, "accelerometer_covariance")
        _check_covariance3(gyro, "gyroscope_covariance")

        g_norm = float(np.linalg.norm(gravity))
        if g_norm > 0.0 and not 9.7 <= g_norm <= 9.9:
            warnings.warn(
                f"Gravity magnitude {g_norm:.4f} m/s² is far from Earth's "
                f"(~9.81 m/s²). Check the units of n_gravity.",
                UserWarning,
            )

        object.__setattr__(self, "accelerometer_covariance", acc)
        object.__setattr__(self, "gyroscope_covariance", gyro)
        object.__setattr__(self, "n_gravity", gravity)

    @classmethod
    def make_shared_u(cls, g: float = STANDARD_GRAVITY) -> "PreintegrationParams":
        """Z-up navigation frame (ENU): gravity = [0, 0, -g], zero noise."""
        return cls(np.zeros((3, 3)), np.zeros((3, 3)),
                   FrameConvention.create_enu().gravity_vector(g))

    @classmethod
    def make_shared_d(cls, g: float = STANDARD_GRAVITY) -> "PreintegrationParams":
        """Z-down navigation frame (NED): gravity = [0, 0, +g], zero noise."""
        return cls(np.zeros((3, 3)), np.zeros((3, 3)),
                   FrameConvention.create_ned().gravity_vector(g))

    @classmethod
    def from_noise_densities(
        cls,
        noise: ImuNoiseDensities,
        frame: FrameConvention = FrameConvention(),
        g: float = STANDARD_GRAVITY,
    ) -> "PreintegrationParams":
        """
        Isotropic covariances from random-walk coefficients.

        Args:
            noise: Gyro ARW and accel VRW in SI units.
            frame: Navigation frame convention (gravity direction).
            g: Gravity magnitude.
        """
        return cls(
            accelerometer_covariance=random_walk_to_psd(noise.accel_vrw_mps_sqrt_s) * np.eye(3),
            gyroscope_covariance=random_walk_to_psd(noise.gyro_arw_rad_sqrt_s) * np.eye(3),
            n_gravity=frame.gravity_vector(g),
        )

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "PreintegrationParams":
        """
        Build from a plain dictionary (e.g. parsed JSON).

        Accepted keys:
            accelerometer_covariance, gyroscope_covariance: 3x3 nested lists
                or scalars (interpreted as σ² * I).
            n_gravity: 3-vector, or
            frame ('ENU'/'NED') and optional g.
        """
        def _cov(value: Any) -> np.ndarray:
            if np.isscalar(value):
                return float(value) * np.eye(3)
            return np.asarray(value, dtype=np.float64)

        missing = {"accelerometer_covariance", "gyroscope_covariance"} - set(config)
        if missing:
            raise ValueError(f"Missing preintegration parameter(s): {sorted(missing)}")

        if "n_gravity" in config:
            gravity = np.asarray(config["n_gravity"], dtype=np.float64)
        else:
            frame = FrameConvention(map_frame=config.get("frame", "ENU"))
            gravity = frame.gravity_vector(float(config.get("g", STANDARD_GRAVITY)))

        return cls(
            accelerometer_covariance=_cov(config["accelerometer_covariance"]),
            gyroscope_covariance=_cov(config["gyroscope_covariance"]),
            n_gravity=gravity,
        )

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "PreintegrationParams":
        """Load parameters from a JSON file (see from_dict for the keys)."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serialisable dictionary, inverse of from_dict."""
        return {
            "accelerometer_covariance": self.accelerometer_covariance.tolist(),
            "gyroscope_covariance": self.gyroscope_covariance.tolist(),
            "n_gravity": self.n_gravity.tolist(),
        }


@dataclass(frozen=True)
class ImuBias:
    """
    Constant IMU bias estimate.

    Attributes:
        accelerometer: Accelerometer offset b_a in body frame, shape (3,). m/s².
        gyroscope: Gyroscope offset b_g in body frame, shape (3,). rad/s.

    Notes:
        - Stacked vector order is [accelerometer, gyroscope].
        - Raw samples are corrected as a = ã - b_a, ω = ω̃ - b_g.

    Example:
        >>> bias = ImuBias(np.array([0.1, 0, 0]), np.zeros(3))
        >>> bias.vector()
        array([0.1, 0. , 0. , 0. , 0. , 0. ])
    """

    accelerometer: np.ndarray
    gyroscope: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "accelerometer",
                           _frozen_array(self.accelerometer, (3,), "ImuBias.accelerometer"))
        object.__setattr__(self, "gyroscope",
                           _frozen_array(self.gyroscope, (3,), "ImuBias.gyroscope"))

    @classmethod
    def zero(cls) -> "ImuBias":
        return cls(np.zeros(3), np.zeros(3))

    @classmethod
    def from_vector(cls, v: np.ndarray) -> "ImuBias":
        """Build from a stacked [b_a, b_g] 6-vector."""
        v = np.asarray(v, dtype=np.float64)
        if v.shape != (6,):
            raise ValueError(f"Bias vector must have shape (6,), got {v.shape}")
        return cls(v[0:3], v[3:6])

    def vector(self) -> np.ndarray:
        return np.concatenate([self.accelerometer, self.gyroscope])

    def correct_accelerometer(self, measured_acc: np.ndarray) -> np.ndarray:
        return np.asarray(measured_acc, dtype=np.float64) - self.accelerometer

    def correct_gyroscope(self, measured_omega: np.ndarray) -> np.ndarray:
        return np.asarray(measured_omega, dtype=np.float64) - self.gyroscope

    def __add__(self, other: "ImuBias") -> "ImuBias":
        return ImuBias(self.accelerometer + other.accelerometer,
                       self.gyroscope + other.gyroscope)

    def __sub__(self, other: "ImuBias") -> "ImuBias":
        return ImuBias(self.accelerometer - other.accelerometer,
                       self.gyroscope - other.gyroscope)
