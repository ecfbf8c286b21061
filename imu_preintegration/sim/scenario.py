"""
Analytic motion scenarios and an IMU simulator for preintegration tests.

A scenario gives the true NavState, body angular rate and body specific force
at any time t. ScenarioRunner samples those signals at a fixed IMU rate,
optionally adds bias and white noise, and feeds an AggregateImuReadings.

The accelerometer forward model is the specific force

    f_b = Rᵀ (a_n - g_n)

i.e. a stationary, level IMU in an ENU frame reads f_b = [0, 0, +g].

Scenarios:
    ConstantTwistScenario: constant body angular rate and body velocity
        (circles / helices).
    AccelerationScenario: constant navigation-frame acceleration and constant
        body angular rate.
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
from tqdm import tqdm

from imu_preintegration.geometry.navstate import NavState
from imu_preintegration.geometry.so3 import expmap, right_jacobian, skew
from imu_preintegration.navigation.aggregate import AggregateImuReadings
from imu_preintegration.navigation.types import ImuBias, PreintegrationParams


class Scenario(ABC):
    """Ground-truth motion: state, angular rate and acceleration over time."""

    def __init__(self, n_gravity: np.ndarray):
        n_gravity = np.asarray(n_gravity, dtype=np.float64)
        if n_gravity.shape != (3,):
            raise ValueError(f"n_gravity must have shape (3,), got {n_gravity.shape}")
        self.n_gravity = n_gravity

    @abstractmethod
    def navstate(self, t: float) -> NavState:
        """True state at time t."""

    @abstractmethod
    def omega_b(self, t: float) -> np.ndarray:
        """True angular velocity in body frame at time t, shape (3,)."""

    @abstractmethod
    def acceleration_n(self, t: float) -> np.ndarray:
        """True kinematic acceleration in navigation frame, shape (3,)."""

    def acc_b(self, t: float) -> np.ndarray:
        """Specific force in body frame: Rᵀ (a_n - g_n)."""
        R = self.navstate(t).attitude
        return R.T @ (self.acceleration_n(t) - self.n_gravity)


class ConstantTwistScenario(Scenario):
    """
    Constant body-frame angular rate ω_b and body-frame velocity v_b.

        R(t) = R0 Exp(ω_b t)
        v(t) = R(t) v_b
        p(t) = p0 + R0 Jl(ω_b t) v_b t,   Jl(φ) = Jr(-φ)

    Example:
        >>> # Level circle of radius 2 m at 1 m/s, ENU
        >>> scenario = ConstantTwistScenario(
        ...     omega_b=np.array([0, 0, 0.5]), v_b=np.array([1.0, 0, 0]),
        ...     n_gravity=np.array([0, 0, -9.81]))
        >>> np.allclose(scenario.navstate(4 * np.pi).position, 0.0, atol=1e-9)
        True
    """

    def __init__(
        self,
        omega_b: np.ndarray,
        v_b: np.ndarray,
        n_gravity: np.ndarray,
        initial_state: Optional[NavState] = None,
    ):
        super().__init__(n_gravity)
        self.w = np.asarray(omega_b, dtype=np.float64)
        self.v_b = np.asarray(v_b, dtype=np.float64)
        if self.w.shape != (3,) or self.v_b.shape != (3,):
            raise ValueError("omega_b and v_b must have shape (3,)")
        if initial_state is None:
            initial_state = NavState(np.eye(3), np.zeros(3), self.v_b)
        self.R0 = initial_state.attitude
        self.p0 = initial_state.position

    def navstate(self, t: float) -> NavState:
        phi = self.w * t
        R = self.R0 @ expmap(phi)
        p = self.p0 + self.R0 @ (right_jacobian(-phi) @ self.v_b) * t
        return NavState(R, p, R @ self.v_b)

    def omega_b(self, t: float) -> np.ndarray:
        return self.w.copy()

    def acceleration_n(self, t: float) -> np.ndarray:
        R = self.R0 @ expmap(self.w * t)
        return R @ (skew(self.w) @ self.v_b)


class AccelerationScenario(Scenario):
    """
    Constant navigation-frame acceleration with constant body angular rate.

        R(t) = R0 Exp(ω_b t)
        v(t) = v0 + a_n t
        p(t) = p0 + v0 t + ½ a_n t²
    """

    def __init__(
        self,
        a_n: np.ndarray,
        omega_b: np.ndarray,
        n_gravity: np.ndarray,
        initial_state: Optional[NavState] = None,
    ):
        super().__init__(n_gravity)
        self.a_n = np.asarray(a_n, dtype=np.float64)
        self.w = np.asarray(omega_b, dtype=np.float64)
        if self.a_n.shape != (3,) or self.w.shape != (3,):
            raise ValueError("a_n and omega_b must have shape (3,)")
        self.initial_state = initial_state if initial_state is not None else NavState.identity()

    def navstate(self, t: float) -> NavState:
        s0 = self.initial_state
        return NavState(
            s0.attitude @ expmap(self.w * t),
            s0.position + s0.velocity * t + 0.5 * self.a_n * t * t,
            s0.velocity + self.a_n * t,
        )

    def omega_b(self, t: float) -> np.ndarray:
        return self.w.copy()

    def acceleration_n(self, t: float) -> np.ndarray:
        return self.a_n.copy()


class ScenarioRunner:
    """
    Simulate IMU samples for a scenario and preintegrate them.

    Attributes:
        scenario: Ground-truth motion.
        params: Preintegration parameters; their densities set the noise level.
        imu_sample_time: IMU sampling interval dt. Units: s.
        bias: True sensor bias added to the ideal samples.
        rng: numpy Generator used for white noise.

    Example:
        >>> params = PreintegrationParams.make_shared_u(9.81)
        >>> scenario = AccelerationScenario(
        ...     np.array([0.1, 0, 0]), np.zeros(3), params.n_gravity)
        >>> runner = ScenarioRunner(scenario, params, imu_sample_time=0.01)
        >>> pim = runner.integrate(1.0)
        >>> runner.predict(pim).equals(scenario.navstate(1.0), tol=1e-9)
        True
    """

    def __init__(
        self,
        scenario: Scenario,
        params: PreintegrationParams,
        imu_sample_time: float = 0.01,
        bias: Optional[ImuBias] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        if imu_sample_time <= 0:
            raise ValueError(f"imu_sample_time must be positive, got {imu_sample_time}")
        self.scenario = scenario
        self.params = params
        self.imu_sample_time = float(imu_sample_time)
        self.bias = bias if bias is not None else ImuBias.zero()
        self.rng = rng if rng is not None else np.random.default_rng()

        # Discrete per-sample noise covariance: Q / dt
        self._acc_cov_discrete = params.accelerometer_covariance / self.imu_sample_time
        self._gyro_cov_discrete = params.gyroscope_covariance / self.imu_sample_time

    def measured_angular_velocity(self, t: float, corrupted: bool = False) -> np.ndarray:
        """Gyro sample at t: ω_b + b_g (+ white noise when corrupted)."""
        omega = self.scenario.omega_b(t) + self.bias.gyroscope
        if corrupted:
            omega = omega + self.rng.multivariate_normal(np.zeros(3), self._gyro_cov_discrete)
        return omega

    def measured_specific_force(self, t: float, corrupted: bool = False) -> np.ndarray:
        """Accelerometer sample at t: f_b + b_a (+ white noise when corrupted)."""
        acc = self.scenario.acc_b(t) + self.bias.accelerometer
        if corrupted:
            acc = acc + self.rng.multivariate_normal(np.zeros(3), self._acc_cov_discrete)
        return acc

    def integrate(
        self,
        T: float,
        estimated_bias: Optional[ImuBias] = None,
        corrupted: bool = False,
    ) -> AggregateImuReadings:
        """
        Preintegrate samples over [0, T).

        Samples are taken at the START of each interval, t_k = k dt.

        Args:
            T: Window length; rounded to a whole number of samples.
            estimated_bias: Bias given to the integrator (default: zero).
            corrupted: Add white noise to every sample.
        """
        pim = AggregateImuReadings(self.params, estimated_bias)
        dt = self.imu_sample_time
        n = int(round(T / dt))
        for k in range(n):
            t = k * dt
            pim.integrate_measurement(
                self.measured_specific_force(t, corrupted),
                self.measured_angular_velocity(t, corrupted),
                dt,
            )
        return pim

    def predict(
        self,
        pim: AggregateImuReadings,
        estimated_bias: Optional[ImuBias] = None,
    ) -> NavState:
        """Predict the end state from the true state at t = 0."""
        return pim.predict(self.scenario.navstate(0.0), estimated_bias).state

    def estimate_covariance(
        self,
        T: float,
        n_samples: int = 1000,
        estimated_bias: Optional[ImuBias] = None,
        progress: bool = False,
    ) -> np.ndarray:
        """
        Monte-Carlo sample covariance of ζ over noisy runs.

        Comparable with AggregateImuReadings.covariance for the same T.
        Set progress=True to show a tqdm progress bar over the runs.
        """
        if n_samples < 2:
            raise ValueError(f"n_samples must be at least 2, got {n_samples}")
        zetas = np.empty((n_samples, 9))
        for i in tqdm(range(n_samples), desc="Monte-Carlo runs", unit="run",
                      disable=not progress):
            zetas[i] = self.integrate(T, estimated_bias, corrupted=True).zeta
        return np.cov(zetas, rowvar=False)
