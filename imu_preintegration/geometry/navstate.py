"""
Navigation state manifold: attitude, position and velocity.

The NavState groups the body-to-navigation rotation nRb, the position n_t
and the velocity n_v, all expressed in the navigation frame N. Its tangent
space is 9-dimensional and ordered as

    ξ = [ξ_R, ξ_P, ξ_V]   (rotation, position, velocity; 3 each)

with all three blocks expressed in the BODY frame of the state being
perturbed. Retraction (the ⊕ operation) is

    R' = R Exp(ξ_R)
    p' = p + R ξ_P
    v' = v + R ξ_V

and local_coordinates is its exact inverse.

Frame Conventions:
    - B: Body frame (IMU frame)
    - N: Navigation frame (ENU or NED, see navigation.types.FrameConvention)
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from imu_preintegration.geometry.so3 import (
    compose,
    expmap,
    is_rotation_matrix,
    logmap,
    right_jacobian,
    rotate,
    skew,
)


def _z3() -> np.ndarray:
    return np.zeros((3, 3))


@dataclass(frozen=True)
class NavState:
    """
    Navigation state on the manifold SO(3) x R³ x R³.

    Attributes:
        attitude: Rotation matrix nRb (body to navigation), shape (3, 3).
        position: Position n_t in navigation frame, shape (3,). Units: m.
        velocity: Velocity n_v in navigation frame, shape (3,). Units: m/s.

    Notes:
        - Immutable; retract() returns a new state.
        - Arrays are converted to float64 copies on construction.

    Example:
        >>> state = NavState(np.eye(3), np.zeros(3), np.array([1.0, 0.0, 0.0]))
        >>> moved = state.retract(np.r_[np.zeros(3), [0.5, 0, 0], np.zeros(3)])
        >>> moved.position
        array([0.5, 0. , 0. ])
    """

    attitude: np.ndarray
    position: np.ndarray
    velocity: np.ndarray

    def __post_init__(self) -> None:
        """Validate shapes and orthogonality of the attitude."""
        attitude = np.array(self.attitude, dtype=np.float64)
        position = np.array(self.position, dtype=np.float64)
        velocity = np.array(self.velocity, dtype=np.float64)

        if attitude.shape != (3, 3):
            raise ValueError(
                f"NavState.attitude must have shape (3, 3), got {attitude.shape}"
            )
        if position.shape != (3,):
            raise ValueError(
                f"NavState.position must have shape (3,), got {position.shape}"
            )
        if velocity.shape != (3,):
            raise ValueError(
                f"NavState.velocity must have shape (3,), got {velocity.shape}"
            )
        if not is_rotation_matrix(attitude, tol=1e-6):
            raise ValueError("NavState.attitude must be a rotation matrix")

        object.__setattr__(self, "attitude", attitude)
        object.__setattr__(self, "position", position)
        object.__setattr__(self, "velocity", velocity)

    @classmethod
    def identity(cls) -> "NavState":
        """State at the origin, at rest, with body aligned to navigation frame."""
        return cls(np.eye(3), np.zeros(3), np.zeros(3))

    @classmethod
    def from_vector(cls, theta: np.ndarray, position: np.ndarray,
                    velocity: np.ndarray) -> "NavState":
        """Build a state from a rotation vector instead of a matrix."""
        return cls(expmap(np.asarray(theta, dtype=np.float64)), position, velocity)

    def body_velocity(self) -> np.ndarray:
        """Velocity expressed in the body frame: Rᵀ n_v."""
        return self.attitude.T @ self.velocity

    def retract(self, xi: np.ndarray) -> "NavState":
        """
        Apply a body-frame tangent increment: self ⊕ ξ.

        Args:
            xi: Tangent vector [ξ_R, ξ_P, ξ_V], shape (9,).

        Returns:
            New NavState.
        """
        xi = self._check_tangent(xi)
        R = self.attitude
        return NavState(
            compose(R, expmap(xi[0:3])),
            self.position + rotate(R, xi[3:6]),
            self.velocity + rotate(R, xi[6:9]),
        )

    def retract_jacobians(self, xi: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Derivatives of retract(ξ) w.r.t. the state and w.r.t. ξ.

        Both are expressed in the tangent space of the RESULT. With
        bRc = Exp(ξ_R):

            H_state = [ bRcᵀ            0     0    ]
                      [ -bRcᵀ [ξ_P]x    bRcᵀ  0    ]
                      [ -bRcᵀ [ξ_V]x    0     bRcᵀ ]

            H_xi    = blockdiag(Jr(ξ_R), bRcᵀ, bRcᵀ)

        Args:
            xi: Tangent vector, shape (9,).

        Returns:
            Tuple (H_state, H_xi), each of shape (9, 9).
        """
        xi = self._check_tangent(xi)
        cRb = expmap(xi[0:3]).T

        H_state = np.block([
            [cRb, _z3(), _z3()],
            [-cRb @ skew(xi[3:6]), cRb, _z3()],
            [-cRb @ skew(xi[6:9]), _z3(), cRb],
        ])
        H_xi = np.block([
            [right_jacobian(xi[0:3]), _z3(), _z3()],
            [_z3(), cRb, _z3()],
            [_z3(), _z3(), cRb],
        ])
        return H_state, H_xi

    def local_coordinates(self, other: "NavState") -> np.ndarray:
        """
        Tangent vector ξ such that self.retract(ξ) == other.

        Returns:
            [Log(Rᵀ R_o), Rᵀ (p_o - p), Rᵀ (v_o - v)], shape (9,).
        """
        Rt = self.attitude.T
        return np.concatenate([
            logmap(Rt @ other.attitude),
            Rt @ (other.position - self.position),
            Rt @ (other.velocity - self.velocity),
        ])

    def equals(self, other: "NavState", tol: float = 1e-9) -> bool:
        """Component-wise comparison within an absolute tolerance."""
        return bool(
            np.allclose(self.attitude, other.attitude, atol=tol)
            and np.allclose(self.position, other.position, atol=tol)
            and np.allclose(self.velocity, other.velocity, atol=tol)
        )

    def to_vector(self) -> np.ndarray:
        """Flatten as [Log(R), p, v], shape (9,)."""
        return np.concatenate([logmap(self.attitude), self.position, self.velocity])

    @staticmethod
    def _check_tangent(xi: np.ndarray) -> np.ndarray:
        xi = np.asarray(xi, dtype=np.float64)
        if xi.shape != (9,):
            raise ValueError(f"Tangent vector must have shape (9,), got {xi.shape}")
        return xi
