"""
Aggregation of IMU readings on the NavState tangent space.

AggregateImuReadings folds a window of bias-corrected IMU samples into a
single tangent-space increment

    ζ = [θ, p, v] ∈ R⁹

expressed in the body frame at the start of the window, together with its
9x9 covariance Σ. Gravity and the initial velocity are NOT part of ζ; they
are injected by predict() once the starting state is known.

Per sample (corrected specific force a, angular rate ω, interval dt):

    θ⁺ = θ + Jr(θ)⁻¹ ω dt
    p⁺ = p + v dt + ½ Exp(θ) a dt²
    v⁺ = v + Exp(θ) a dt
    Σ⁺ = A Σ Aᵀ + B_ω (Q_ω / dt) B_ωᵀ + B_a (Q_a / dt) B_aᵀ

where Q_a, Q_ω are the continuous-time noise spectral densities and A, B_a,
B_ω are the Jacobians of the mean step.

Block layout of every 9-vector and 9x9 matrix is [rotation, position,
velocity]; use the slices ROT, POS and VEL below rather than raw indices.
"""

import warnings
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from imu_preintegration.geometry.navstate import NavState
from imu_preintegration.geometry.so3 import (
    expmap,
    right_jacobian,
    right_jacobian_inverse,
    rotate,
    rotate_jacobians,
    skew,
)
from imu_preintegration.navigation.types import ImuBias, PreintegrationParams
from imu_preintegration.noise.gaussian import GaussianNoiseModel


ROT = slice(0, 3)
POS = slice(3, 6)
VEL = slice(6, 9)

# Most negative eigenvalue of Σ (relative to its largest) accepted silently
PSD_DRIFT_TOL = 1e-9


@dataclass(frozen=True)
class StepJacobians:
    """
    Jacobians of one mean-propagation step.

    Attributes:
        A: ∂ζ⁺/∂ζ, shape (9, 9).
        B_acc: ∂ζ⁺/∂a (corrected specific force), shape (9, 3).
        B_omega: ∂ζ⁺/∂ω (corrected angular rate), shape (9, 3).
    """

    A: np.ndarray
    B_acc: np.ndarray
    B_omega: np.ndarray


@dataclass(frozen=True)
class EstimateUpdate:
    """Result of update_estimate: the new ζ and, if requested, its Jacobians."""

    zeta: np.ndarray
    jacobians: Optional[StepJacobians] = None


@dataclass(frozen=True)
class PredictionJacobians:
    """
    Jacobians of the predicted state, in the tangent space of the result.

    Attributes:
        H_state: w.r.t. the starting NavState, shape (9, 9).
        H_bias: w.r.t. the starting bias [b_a, b_g], shape (9, 6).
    """

    H_state: np.ndarray
    H_bias: np.ndarray


@dataclass(frozen=True)
class Prediction:
    """Result of predict: the end-of-window state and optional Jacobians."""

    state: NavState
    jacobians: Optional[PredictionJacobians] = None


def _check_sample(v: np.ndarray, name: str) -> np.ndarray:
    v = np.asarray(v, dtype=np.float64)
    if v.shape != (3,):
        raise ValueError(f"{name} must have shape (3,), got {v.shape}")
    if not np.all(np.isfinite(v)):
        raise ValueError(f"{name} must be finite, got {v}")
    return v


def _check_dt(dt: float) -> float:
    dt = float(dt)
    if not np.isfinite(dt) or dt <= 0:
        raise ValueError(f"dt must be positive, got {dt}")
    return dt


class AggregateImuReadings:
    """
    Preintegrated IMU measurement for one integration window.

    Holds the running tangent delta ζ, its covariance Σ, the sample count k
    and the elapsed time Δt_ij. Create one instance per window, feed it with
    integrate_measurement(), then query predict() and noise_model().

    Attributes:
        params: Shared PreintegrationParams (read-only).
        estimated_bias: Bias subtracted from every raw sample (read-only).

    Notes:
        - Not thread-safe; one instance belongs to one caller.
        - There is no reset: construct a new instance for the next window.

    Example:
        >>> params = PreintegrationParams(
        ...     1e-4 * np.eye(3), 1e-4 * np.eye(3), np.array([0, 0, -9.81]))
        >>> pim = AggregateImuReadings(params, ImuBias.zero())
        >>> for _ in range(100):
        ...     pim.integrate_measurement(np.array([0, 0, 9.81]), np.zeros(3), 0.01)
        >>> np.round(pim.zeta[6:9], 6)
        array([0.  , 0.  , 9.81])
    """

    def __init__(
        self,
        params: PreintegrationParams,
        estimated_bias: Optional[ImuBias] = None,
        check_covariance: bool = True,
    ):
        """
        Initialize an empty window.

        Args:
            params: Noise densities and gravity, shared by reference.
            estimated_bias: Bias estimate for the window (default: zero).
            check_covariance: Warn (RuntimeWarning) when Σ develops negative
                eigenvalues after an update.
        """
        if not isinstance(params, PreintegrationParams):
            raise TypeError(
                f"params must be PreintegrationParams, got {type(params).__name__}"
            )
        if estimated_bias is None:
            estimated_bias = ImuBias.zero()
        if not isinstance(estimated_bias, ImuBias):
            raise TypeError(
                f"estimated_bias must be ImuBias, got {type(estimated_bias).__name__}"
            )

        self.params = params
        self.estimated_bias = estimated_bias
        self.check_covariance = check_covariance

        self._accelerometer_noise = GaussianNoiseModel(params.accelerometer_covariance)
        self._gyroscope_noise = GaussianNoiseModel(params.gyroscope_covariance)

        self._zeta = np.zeros(9)
        self._cov = np.zeros((9, 9))
        self._H_bias_acc = np.zeros((9, 3))
        self._H_bias_omega = np.zeros((9, 3))
        self._k = 0
        self._delta_t_ij = 0.0

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def zeta(self) -> np.ndarray:
        """Accumulated tangent delta [θ, p, v], shape (9,). Copy."""
        return self._zeta.copy()

    @property
    def theta(self) -> np.ndarray:
        return self._zeta[ROT].copy()

    @property
    def delta_position(self) -> np.ndarray:
        return self._zeta[POS].copy()

    @property
    def delta_velocity(self) -> np.ndarray:
        return self._zeta[VEL].copy()

    @property
    def delta_rotation(self) -> np.ndarray:
        """Relative rotation iRj = Exp(θ) over the window."""
        return expmap(self._zeta[ROT])

    @property
    def covariance(self) -> np.ndarray:
        """Accumulated (uncorrected) tangent covariance Σ, shape (9, 9). Copy."""
        return self._cov.copy()

    @property
    def bias_jacobian(self) -> np.ndarray:
        """∂ζ/∂[b_a, b_g] at the estimated bias, shape (9, 6)."""
        return np.hstack([self._H_bias_acc, self._H_bias_omega])

    @property
    def k(self) -> int:
        """Number of samples integrated so far."""
        return self._k

    @property
    def delta_t_ij(self) -> float:
        """Total integrated time in seconds."""
        return self._delta_t_ij

    # ------------------------------------------------------------------
    # Mean propagation
    # ------------------------------------------------------------------

    @staticmethod
    def update_estimate(
        zeta: np.ndarray,
        corrected_acc: np.ndarray,
        corrected_omega: np.ndarray,
        dt: float,
        compute_jacobians: bool = False,
    ) -> EstimateUpdate:
        """
        Propagate ζ through one sample with exact rotation handling.

        Args:
            zeta: Current tangent delta [θ, p, v], shape (9,).
            corrected_acc: Bias-corrected specific force a, shape (3,). m/s².
            corrected_omega: Bias-corrected angular rate ω, shape (3,). rad/s.
            dt: Sample interval, must be > 0. Units: s.
            compute_jacobians: Also return A, B_acc and B_omega.

        Returns:
            EstimateUpdate with the new ζ; jacobians is None unless requested.

        Notes:
            - θ is advanced through Jr(θ)⁻¹, which keeps θ the exact
              exponential coordinates of the composed rotation to first order
              in ω dt.
            - The rotation self-block of A uses the small-angle term
              skew(-½ ω dt); coupling blocks are exact.
        """
        zeta = np.asarray(zeta, dtype=np.float64)
        if zeta.shape != (9,):
            raise ValueError(f"zeta must have shape (9,), got {zeta.shape}")
        a = _check_sample(corrected_acc, "corrected_acc")
        w = _check_sample(corrected_omega, "corrected_omega")
        dt = _check_dt(dt)

        a_dt = a * dt
        w_dt = w * dt

        theta = zeta[ROT]
        R = expmap(theta)
        invH = right_jacobian_inverse(theta)
        R_adt = rotate(R, a_dt)

        dt2 = 0.5 * dt
        zeta_plus = np.empty(9)
        zeta_plus[ROT] = theta + invH @ w_dt
        zeta_plus[POS] = zeta[POS] + zeta[VEL] * dt + R_adt * dt2
        zeta_plus[VEL] = zeta[VEL] + R_adt

        if not compute_jacobians:
            return EstimateUpdate(zeta_plus)

        D_Radt_R, D_Radt_adt = rotate_jacobians(R, a_dt)
        D_R_theta = right_jacobian(theta)
        # Exact derivative of R a dt w.r.t. θ
        D_Radt_theta = D_Radt_R @ D_R_theta
        # First-order (small angle) derivative of invH w dt w.r.t. θ
        D_invHwdt_theta = skew(-0.5 * w_dt)

        A = np.eye(9)
        A[ROT, ROT] += D_invHwdt_theta
        A[POS, ROT] = D_Radt_theta * dt2
        A[POS, VEL] = np.eye(3) * dt
        A[VEL, ROT] = D_Radt_theta

        B_acc = np.zeros((9, 3))
        B_acc[POS] = D_Radt_adt * dt * dt2
        B_acc[VEL] = D_Radt_adt * dt

        B_omega = np.zeros((9, 3))
        B_omega[ROT] = invH * dt

        return EstimateUpdate(zeta_plus, StepJacobians(A, B_acc, B_omega))

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def integrate_measurement(
        self,
        measured_acc: np.ndarray,
        measured_omega: np.ndarray,
        dt: float,
    ) -> None:
        """
        Fold one raw IMU sample into the window.

        Subtracts the estimated bias, advances ζ, propagates Σ and the bias
        sensitivities, and increments k and Δt_ij.

        Args:
            measured_acc: Raw accelerometer sample, shape (3,). m/s².
            measured_omega: Raw gyroscope sample, shape (3,). rad/s.
            dt: Interval covered by the sample, must be > 0. Units: s.

        Raises:
            ValueError: On wrong shapes, non-finite values or dt <= 0. The
                running state is left untouched in that case.
        """
        corrected_acc = self.estimated_bias.correct_accelerometer(
            _check_sample(measured_acc, "measured_acc"))
        corrected_omega = self.estimated_bias.correct_gyroscope(
            _check_sample(measured_omega, "measured_omega"))
        dt = _check_dt(dt)

        update = self.update_estimate(
            self._zeta, corrected_acc, corrected_omega, dt, compute_jacobians=True
        )
        A = update.jacobians.A
        B_a = update.jacobians.B_acc
        B_w = update.jacobians.B_omega

        # Continuous spectral densities -> discrete per-step covariances
        Q_w = self._gyroscope_noise.covariance / dt
        Q_a = self._accelerometer_noise.covariance / dt

        cov = A @ self._cov @ A.T + B_w @ Q_w @ B_w.T + B_a @ Q_a @ B_a.T
        cov = 0.5 * (cov + cov.T)

        # Corrected inputs are raw minus bias, hence the minus signs
        self._H_bias_acc = A @ self._H_bias_acc - B_a
        self._H_bias_omega = A @ self._H_bias_omega - B_w

        self._zeta = update.zeta
        self._cov = cov
        self._k += 1
        self._delta_t_ij += dt

        if self.check_covariance:
            self._check_psd()

    def integrate_measurements(
        self,
        measured_accs: np.ndarray,
        measured_omegas: np.ndarray,
        dts: Union[float, np.ndarray],
    ) -> None:
        """
        Fold a batch of samples in time order.

        Args:
            measured_accs: Raw accelerometer samples, shape (N, 3).
            measured_omegas: Raw gyroscope samples, shape (N, 3).
            dts: Scalar interval or per-sample intervals, shape (N,).
        """
        accs = np.asarray(measured_accs, dtype=np.float64)
        omegas = np.asarray(measured_omegas, dtype=np.float64)
        if accs.ndim != 2 or accs.shape[1] != 3:
            raise ValueError(f"measured_accs must have shape (N, 3), got {accs.shape}")
        if omegas.shape != accs.shape:
            raise ValueError(
                f"measured_omegas must have shape {accs.shape}, got {omegas.shape}"
            )

        n = accs.shape[0]
        dts = np.asarray(dts, dtype=np.float64)
        if dts.ndim == 0:
            dts = np.full(n, float(dts))
        if dts.shape != (n,):
            raise ValueError(f"dts must be scalar or shape ({n},), got {dts.shape}")

        for acc, omega, dt in zip(accs, omegas, dts):
            self.integrate_measurement(acc, omega, dt)

    def _check_psd(self) -> None:
        eigvals = np.linalg.eigvalsh(self._cov)
        scale = max(float(eigvals[-1]), 1e-300)
        if eigvals[0] < -PSD_DRIFT_TOL * scale:
            warnings.warn(
                f"Preintegrated covariance lost positive semi-definiteness after "
                f"{self._k} samples (min eigenvalue {eigvals[0]:.3e}). "
                "Check dt and the noise densities.",
                RuntimeWarning,
            )

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def bias_corrected_delta(self, bias: ImuBias) -> np.ndarray:
        """
        First-order correction of ζ for a bias different from the estimate.

            ζ(b) ≈ ζ(b̂) + ∂ζ/∂b_a (b_a - b̂_a) + ∂ζ/∂b_g (b_g - b̂_g)
        """
        delta = bias - self.estimated_bias
        return (
            self._zeta
            + self._H_bias_acc @ delta.accelerometer
            + self._H_bias_omega @ delta.gyroscope
        )

    def predict(
        self,
        state_i: NavState,
        bias_i: Optional[ImuBias] = None,
        compute_jacobians: bool = False,
    ) -> Prediction:
        """
        Predict the end-of-window state from a known starting state.

        Adds the initial-velocity and gravity contributions to ζ, expressed in
        the starting body frame,

            p += Rᵢᵀ (vᵢ Δt + ½ g Δt²)
            v += Rᵢᵀ g Δt

        and retracts state_i by the result. Does not modify the integrator.

        Args:
            state_i: NavState at the start of the window.
            bias_i: Bias at the start of the window (default: the estimated
                bias, in which case no bias correction is applied).
            compute_jacobians: Also return the Jacobians w.r.t. state_i and
                bias_i (including the gravity/velocity correction terms).

        Returns:
            Prediction with the predicted NavState.
        """
        if bias_i is None:
            bias_i = self.estimated_bias
        zeta = self.bias_corrected_delta(bias_i)

        dt_ij = self._delta_t_ij
        Rit = state_i.attitude.T
        gt = dt_ij * self.params.n_gravity
        pos_term = state_i.velocity * dt_ij + 0.5 * dt_ij * gt
        zeta[POS] += Rit @ pos_term
        zeta[VEL] += Rit @ gt

        state_j = state_i.retract(zeta)
        if not compute_jacobians:
            return Prediction(state_j)

        D_retract_state, D_retract_zeta = state_i.retract_jacobians(zeta)

        # Derivative of the corrected ζ w.r.t. a right perturbation of state_i:
        # Rᵢᵀ y changes by [Rᵢᵀ y]x δR; vᵢ changes by Rᵢ δv.
        D_zeta_state = np.zeros((9, 9))
        D_zeta_state[POS, ROT] = skew(Rit @ pos_term)
        D_zeta_state[POS, VEL] = np.eye(3) * dt_ij
        D_zeta_state[VEL, ROT] = skew(Rit @ gt)

        H_state = D_retract_state + D_retract_zeta @ D_zeta_state
        H_bias = D_retract_zeta @ self.bias_jacobian
        return Prediction(state_j, PredictionJacobians(H_state, H_bias))

    def compute_error(
        self,
        state_i: NavState,
        state_j: NavState,
        bias_i: Optional[ImuBias] = None,
    ) -> np.ndarray:
        """
        Residual between the predicted and an observed end state.

        Returns:
            predict(state_i, bias_i).state.local_coordinates(state_j),
            shape (9,). Zero for a perfect measurement.
        """
        predicted = self.predict(state_i, bias_i).state
        return predicted.local_coordinates(state_j)

    # ------------------------------------------------------------------
    # Noise model
    # ------------------------------------------------------------------

    def retract_jacobian(self) -> np.ndarray:
        """
        Differential of the retraction at the accumulated θ.

            H = blockdiag(Jr(θ), iRjᵀ, iRjᵀ),   iRj = Exp(θ)

        Maps the tangent covariance Σ to the covariance of the retracted
        measurement: Σ_retract = H Σ Hᵀ.
        """
        theta = self._zeta[ROT]
        jRi = expmap(theta).T
        H = np.zeros((9, 9))
        H[ROT, ROT] = right_jacobian(theta)
        H[POS, POS] = jRi
        H[VEL, VEL] = jRi
        return H

    def noise_model(self, retract_corrected: bool = False) -> GaussianNoiseModel:
        """
        Gaussian noise model of the preintegrated measurement.

        Args:
            retract_corrected: If False (default), report the accumulated
                tangent covariance Σ unchanged. If True, report H Σ Hᵀ with
                H = retract_jacobian(), i.e. the covariance expressed in the
                tangent space at the end of the window.

        Returns:
            GaussianNoiseModel of dimension 9.
        """
        cov = self._cov
        if retract_corrected:
            H = self.retract_jacobian()
            cov = H @ cov @ H.T
            cov = 0.5 * (cov + cov.T)
        return GaussianNoiseModel(cov)

    def preint_meas_cov(self, retract_corrected: bool = False) -> np.ndarray:
        """Raw 9x9 covariance of noise_model(retract_corrected)."""
        return self.noise_model(retract_corrected).covariance.copy()

    def __repr__(self) -> str:
        return (
            f"AggregateImuReadings(k={self._k}, delta_t_ij={self._delta_t_ij:.6f}, "
            f"theta={np.round(self._zeta[ROT], 6)}, "
            f"p={np.round(self._zeta[POS], 6)}, v={np.round(self._zeta[VEL], 6)})"
        )
