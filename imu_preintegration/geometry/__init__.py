"""Manifold geometry for inertial navigation.

- so3: exponential/logarithm maps of SO(3) and their differentials
- navstate: the 9-dimensional navigation state (attitude, position, velocity)
"""

from imu_preintegration.geometry.navstate import NavState
from imu_preintegration.geometry.so3 import (
    compose,
    expmap,
    is_rotation_matrix,
    logmap,
    right_jacobian,
    right_jacobian_inverse,
    rotate,
    rotate_jacobians,
    skew,
    vee,
)

__all__ = [
    "NavState",
    "compose",
    "expmap",
    "is_rotation_matrix",
    "logmap",
    "right_jacobian",
    "right_jacobian_inverse",
    "rotate",
    "rotate_jacobians",
    "skew",
    "vee",
]
