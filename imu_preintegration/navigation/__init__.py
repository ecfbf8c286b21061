"""
IMU preintegration: bias, parameters and the AggregateImuReadings integrator.

Modules:
    types: FrameConvention, ImuNoiseDensities, PreintegrationParams, ImuBias
    units: datasheet noise-density unit conversions
    aggregate: AggregateImuReadings and its result types

Example:
    >>> import numpy as np
    >>> from imu_preintegration.navigation import (
    ...     AggregateImuReadings, ImuBias, PreintegrationParams)
    >>> from imu_preintegration.geometry import NavState
    >>> params = PreintegrationParams.make_shared_u(9.81)
    >>> pim = AggregateImuReadings(params, ImuBias.zero())
    >>> for _ in range(100):
    ...     pim.integrate_measurement(np.array([0, 0, 9.81]), np.zeros(3), 0.01)
    >>> state_j = pim.predict(NavState.identity()).state  # stationary
"""

from imu_preintegration.navigation.aggregate import (
    AggregateImuReadings,
    EstimateUpdate,
    Prediction,
    PredictionJacobians,
    StepJacobians,
)
from imu_preintegration.navigation.types import (
    STANDARD_GRAVITY,
    FrameConvention,
    ImuBias,
    ImuNoiseDensities,
    PreintegrationParams,
)

__all__ = [
    "AggregateImuReadings",
    "EstimateUpdate",
    "FrameConvention",
    "ImuBias",
    "ImuNoiseDensities",
    "Prediction",
    "PredictionJacobians",
    "PreintegrationParams",
    "STANDARD_GRAVITY",
    "StepJacobians",
]
