"""SO(3) exponential map, logarithm map and their differentials.

This module provides the rotation-group operations needed to integrate
angular velocity on the manifold and to differentiate that integration:
- Exponential map (Rodrigues formula): tangent vector θ -> rotation matrix
- Logarithm map: rotation matrix -> tangent vector θ
- Right Jacobian Jr(θ) of the exponential map and its inverse
- Rotation action R @ v and its derivatives

Conventions:
- Rotation matrices are 3x3 numpy arrays with R.T @ R = I, det(R) = 1.
- Perturbations are applied on the right: R ⊕ δ = R @ Exp(δ).
- The right Jacobian satisfies Exp(θ + δ) ≈ Exp(θ) @ Exp(Jr(θ) @ δ).

Small-angle branches use Taylor expansions so that every function is
smooth through θ = 0.
"""

from typing import Tuple

import numpy as np
from numpy.typing import NDArray


# Below this squared angle the closed-form coefficients lose precision
SMALL_ANGLE_SQ = 1e-10
# Distance from π below which logmap uses the symmetric part of R
NEAR_PI_TOL = 1e-6


def _check_vector3(v: NDArray[np.float64], name: str) -> NDArray[np.float64]:
    v = np.asarray(v, dtype=np.float64)
    if v.shape != (3,):
        raise ValueError(f"{name} must have shape (3,), got {v.shape}")
    return v


def _check_matrix3(R: NDArray[np.float64], name: str) -> NDArray[np.float64]:
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"{name} must have shape (3, 3), got {R.shape}")
    return R


def skew(v: NDArray[np.float64]) -> NDArray[np.float64]:
    """Build the skew-symmetric matrix [v]x such that [v]x @ u = v x u.

    Args:
        v: 3-vector.

    Returns:
        3x3 skew-symmetric matrix.

    Raises:
        ValueError: If v does not have shape (3,).

    Example:
        >>> skew(np.array([1.0, 2.0, 3.0]))
        array([[ 0., -3.,  2.],
               [ 3.,  0., -1.],
               [-2.,  1.,  0.]])
    """
    x, y, z = _check_vector3(v, "v")
    return np.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ],
        dtype=np.float64,
    )


def vee(W: NDArray[np.float64]) -> NDArray[np.float64]:
    """Inverse of skew: extract v from a skew-symmetric matrix [v]x."""
    W = _check_matrix3(W, "W")
    return np.array([W[2, 1], W[0, 2], W[1, 0]], dtype=np.float64)


def expmap(theta: NDArray[np.float64]) -> NDArray[np.float64]:
    """Exponential map from so(3) to SO(3).

    Implements the Rodrigues formula:

        Exp(θ) = I + sin(t)/t [θ]x + (1 - cos(t))/t² [θ]x²,   t = ||θ||

    For t² below SMALL_ANGLE_SQ the second-order Taylor expansion
    I + [θ]x + ½[θ]x² is used instead.

    Args:
        theta: Rotation vector (axis * angle), shape (3,). Units: rad.

    Returns:
        3x3 rotation matrix.

    Example:
        >>> R = expmap(np.array([0.0, 0.0, np.pi / 2]))
        >>> np.allclose(R @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0])
        True
    """
    theta = _check_vector3(theta, "theta")
    K = skew(theta)
    t2 = float(theta @ theta)

    if t2 < SMALL_ANGLE_SQ:
        return np.eye(3) + K + 0.5 * (K @ K)

    t = np.sqrt(t2)
    return np.eye(3) + (np.sin(t) / t) * K + ((1.0 - np.cos(t)) / t2) * (K @ K)


def right_jacobian(theta: NDArray[np.float64]) -> NDArray[np.float64]:
    """Right Jacobian (differential) of the exponential map.

        Jr(θ) = I - (1 - cos t)/t² [θ]x + (t - sin t)/t³ [θ]x²

    This is the matrix H in Exp(θ + δ) ≈ Exp(θ) Exp(H δ), i.e. the
    derivative of Exp(θ) with respect to θ expressed in the tangent space
    at Exp(θ).

    Args:
        theta: Rotation vector, shape (3,).

    Returns:
        3x3 right Jacobian. Equals I at θ = 0.
    """
    theta = _check_vector3(theta, "theta")
    K = skew(theta)
    t2 = float(theta @ theta)

    if t2 < SMALL_ANGLE_SQ:
        return np.eye(3) - 0.5 * K + (K @ K) / 6.0

    t = np.sqrt(t2)
    return (
        np.eye(3)
        - ((1.0 - np.cos(t)) / t2) * K
        + ((t - np.sin(t)) / (t2 * t)) * (K @ K)
    )


def right_jacobian_inverse(theta: NDArray[np.float64]) -> NDArray[np.float64]:
    """Closed-form inverse of the right Jacobian.

        Jr⁻¹(θ) = I + ½[θ]x + (1/t² - (1 + cos t)/(2 t sin t)) [θ]x²

    The closed form is singular at t = 2π; rotation vectors produced by
    integrating a single window stay well below that.

    Args:
        theta: Rotation vector, shape (3,).

    Returns:
        3x3 inverse right Jacobian.
    """
    theta = _check_vector3(theta, "theta")
    K = skew(theta)
    t2 = float(theta @ theta)

    if t2 < SMALL_ANGLE_SQ:
        return np.eye(3) + 0.5 * K + (K @ K) / 12.0

    t = np.sqrt(t2)
    coeff = 1.0 / t2 - (1.0 + np.cos(t)) / (2.0 * t * np.sin(t))
    return np.eye(3) + 0.5 * K + coeff * (K @ K)


def logmap(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Logarithm map from SO(3) to so(3), inverse of expmap.

    Args:
        R: 3x3 rotation matrix.

    Returns:
        Rotation vector θ with ||θ|| in [0, π].

    Notes:
        - The angle is atan2(||w||, cos θ) with w = ½ vee(R - Rᵀ) = sin θ a;
          unlike arccos it stays well conditioned near 0 and π.
        - Near θ = 0 the first-order expression w is used.
        - Near ||θ|| = π the axis is recovered from the symmetric part
          (½(R + Rᵀ) - cos θ I) / (1 - cos θ) = a aᵀ, since w vanishes there.
    """
    R = _check_matrix3(R, "R")

    cos_angle = 0.5 * (np.trace(R) - 1.0)
    w = 0.5 * np.array(
        [R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]],
        dtype=np.float64,
    )
    sin_angle = float(np.linalg.norm(w))
    angle = float(np.arctan2(sin_angle, cos_angle))

    if angle * angle < SMALL_ANGLE_SQ:
        return w

    if np.pi - angle < NEAR_PI_TOL:
        B = (0.5 * (R + R.T) - cos_angle * np.eye(3)) / (1.0 - cos_angle)
        k = int(np.argmax(np.diag(B)))
        axis = B[:, k] / np.sqrt(B[k, k])
        # Resolve the sign ambiguity with the (tiny) antisymmetric part
        if axis @ w < 0.0:
            axis = -axis
        return angle * axis / np.linalg.norm(axis)

    return (angle / sin_angle) * w


def rotate(R: NDArray[np.float64], v: NDArray[np.float64]) -> NDArray[np.float64]:
    """Rotate a vector: R @ v."""
    return _check_matrix3(R, "R") @ _check_vector3(v, "v")


def rotate_jacobians(
    R: NDArray[np.float64],
    v: NDArray[np.float64],
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Derivatives of the rotation action R @ v.

    With the right perturbation R ⊕ δ = R Exp(δ):

        ∂(R v)/∂δ = -R [v]x
        ∂(R v)/∂v = R

    Args:
        R: 3x3 rotation matrix.
        v: 3-vector being rotated.

    Returns:
        Tuple (D_R, D_v) of 3x3 matrices.
    """
    R = _check_matrix3(R, "R")
    v = _check_vector3(v, "v")
    return -R @ skew(v), R.copy()


def compose(R1: NDArray[np.float64], R2: NDArray[np.float64]) -> NDArray[np.float64]:
    """Compose two rotations: R1 @ R2."""
    return _check_matrix3(R1, "R1") @ _check_matrix3(R2, "R2")


def is_rotation_matrix(R: NDArray[np.float64], tol: float = 1e-6) -> bool:
    """Check orthogonality and unit determinant of a 3x3 matrix."""
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3) or not np.all(np.isfinite(R)):
        return False
    return bool(
        np.allclose(R.T @ R, np.eye(3), atol=tol)
        and abs(np.linalg.det(R) - 1.0) < tol
    )
