"""Gaussian noise model for preintegrated measurements.

A GaussianNoiseModel wraps an n x n covariance Σ and exposes the quantities a
least-squares back-end needs to weight a residual r:

    information      Λ = Σ⁻¹
    sqrt_information R with Rᵀ R = Λ (upper triangular)
    whiten(r)        R r
    mahalanobis      rᵀ Λ r

The covariance is validated on construction (square, symmetric, PSD) with the
same tolerances used for measurement packets elsewhere in the package. A
singular but PSD covariance (e.g. an empty integration window) is accepted;
the information-form accessors then raise numpy.linalg.LinAlgError.
"""

from typing import Optional

import numpy as np
from scipy import linalg


# Tolerance for symmetry and negative-eigenvalue checks
SYMMETRY_TOL = 1e-9
PSD_TOL = 1e-10


class GaussianNoiseModel:
    """
    Full-covariance Gaussian noise model.

    Attributes:
        covariance: Covariance matrix Σ, shape (n, n). Read-only copy.
        dim: Dimension n.

    Example:
        >>> model = GaussianNoiseModel.from_sigmas(np.array([0.1, 0.2]))
        >>> model.whiten(np.array([0.1, 0.2]))
        array([1., 1.])
    """

    def __init__(self, covariance: np.ndarray):
        """
        Initialize from a covariance matrix.

        Args:
            covariance: Symmetric positive semi-definite matrix, shape (n, n).

        Raises:
            ValueError: If the matrix is not square, not finite, not symmetric
                or has eigenvalues below -PSD_TOL (scaled by its largest one).
        """
        cov = np.array(covariance, dtype=np.float64)

        if cov.ndim != 2 or cov.shape[0] != cov.shape[1]:
            raise ValueError(f"Covariance must be a square matrix, got shape {cov.shape}")
        if not np.all(np.isfinite(cov)):
            raise ValueError("Covariance must contain only finite values")

        scale = max(1.0, float(np.max(np.abs(cov)))) if cov.size else 1.0
        if not np.allclose(cov, cov.T, atol=SYMMETRY_TOL * scale):
            raise ValueError("Covariance must be symmetric")

        eigvals = np.linalg.eigvalsh(cov)
        if np.any(eigvals < -PSD_TOL * scale):
            raise ValueError(
                f"Covariance must be positive semi-definite, got eigenvalues {eigvals}"
            )

        cov.setflags(write=False)
        self._covariance = cov
        self._sqrt_information: Optional[np.ndarray] = None

    @classmethod
    def from_covariance(cls, covariance: np.ndarray) -> "GaussianNoiseModel":
        """Construct from a covariance matrix (alias of the constructor)."""
        return cls(covariance)

    @classmethod
    def from_sigmas(cls, sigmas: np.ndarray) -> "GaussianNoiseModel":
        """Construct a diagonal model from standard deviations."""
        sigmas = np.asarray(sigmas, dtype=np.float64)
        if sigmas.ndim != 1:
            raise ValueError(f"sigmas must be a 1D array, got shape {sigmas.shape}")
        if np.any(sigmas < 0):
            raise ValueError(f"sigmas must be non-negative, got {sigmas}")
        return cls(np.diag(sigmas**2))

    @property
    def covariance(self) -> np.ndarray:
        return self._covariance

    @property
    def dim(self) -> int:
        return self._covariance.shape[0]

    @property
    def sigmas(self) -> np.ndarray:
        """Marginal standard deviations sqrt(diag(Σ))."""
        return np.sqrt(np.diag(self._covariance))

    @property
    def sqrt_information(self) -> np.ndarray:
        """
        Upper-triangular R with Rᵀ R = Σ⁻¹.

        Computed lazily from a Cholesky solve of Σ followed by an upper
        Cholesky factorisation of Λ.

        Raises:
            numpy.linalg.LinAlgError: If Σ is not positive definite.
        """
        if self._sqrt_information is None:
            factor = linalg.cho_factor(self._covariance, lower=True)
            information = linalg.cho_solve(factor, np.eye(self.dim))
            information = 0.5 * (information + information.T)
            self._sqrt_information = linalg.cholesky(information, lower=False)
        return self._sqrt_information

    @property
    def information(self) -> np.ndarray:
        """Information matrix Λ = Σ⁻¹."""
        R = self.sqrt_information
        return R.T @ R

    def whiten(self, v: np.ndarray) -> np.ndarray:
        """Whiten a residual: R v, so that ||R v||² = vᵀ Σ⁻¹ v."""
        v = self._check_vector(v)
        return self.sqrt_information @ v

    def unwhiten(self, v: np.ndarray) -> np.ndarray:
        """Inverse of whiten: R⁻¹ v."""
        v = self._check_vector(v)
        return linalg.solve_triangular(self.sqrt_information, v, lower=False)

    def mahalanobis_distance(self, v: np.ndarray) -> float:
        """Squared Mahalanobis distance vᵀ Σ⁻¹ v."""
        w = self.whiten(v)
        return float(w @ w)

    def equals(self, other: "GaussianNoiseModel", tol: float = 1e-9) -> bool:
        return self.dim == other.dim and bool(
            np.allclose(self._covariance, other.covariance, atol=tol)
        )

    def _check_vector(self, v: np.ndarray) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        if v.shape != (self.dim,):
            raise ValueError(f"Expected vector of shape ({self.dim},), got {v.shape}")
        return v

    def __repr__(self) -> str:
        return f"GaussianNoiseModel(dim={self.dim}, sigmas={np.round(self.sigmas, 6)})"
