"""IMU measurement aggregation on the navigation-state tangent space.

This package summarises a window of high-rate IMU readings into a single
preintegrated measurement (tangent delta plus covariance) that relates two
navigation states:
- geometry: SO(3) exponential map and the 9-dimensional NavState manifold
- noise: Gaussian noise model used to weight the preintegrated measurement
- navigation: bias, noise parameters and the AggregateImuReadings integrator
- sim: constant-twist / constant-acceleration scenarios for testing
"""

from imu_preintegration.geometry import NavState
from imu_preintegration.navigation import (
    AggregateImuReadings,
    ImuBias,
    PreintegrationParams,
)
from imu_preintegration.noise import GaussianNoiseModel

__all__ = [
    "AggregateImuReadings",
    "GaussianNoiseModel",
    "ImuBias",
    "NavState",
    "PreintegrationParams",
]

__version__ = "0.1.0"
