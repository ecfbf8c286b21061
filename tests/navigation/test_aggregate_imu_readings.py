"""
Unit tests for imu_preintegration/navigation/aggregate.py.

Tests cover:
    - Mean propagation on hand-computable inputs
    - Covariance growth, symmetry and positive semi-definiteness
    - Sample-count / elapsed-time bookkeeping
    - predict() kinematics with gravity and initial velocity
    - First-order bias correction
    - Noise model (default vs retract-corrected)
    - Input validation and diagnostics

Run with: pytest tests/navigation/test_aggregate_imu_readings.py -v
"""

import math
import unittest

import numpy as np
import pytest

from imu_preintegration.geometry import NavState, expmap, right_jacobian, rotate
from imu_preintegration.navigation import (
    AggregateImuReadings,
    ImuBias,
    PreintegrationParams,
)
from imu_preintegration.noise import GaussianNoiseModel


GRAVITY_ENU = np.array([0.0, 0.0, -9.81])


def make_params(sigma2: float = 1e-4) -> PreintegrationParams:
    return PreintegrationParams(sigma2 * np.eye(3), sigma2 * np.eye(3), GRAVITY_ENU)


class TestStationaryWindow(unittest.TestCase):
    """100 samples of a level, stationary IMU at 100 Hz."""

    def setUp(self) -> None:
        self.pim = AggregateImuReadings(make_params(), ImuBias.zero())
        self.diagonals = [np.diag(self.pim.covariance)]
        for _ in range(100):
            self.pim.integrate_measurement(np.array([0.0, 0.0, 9.81]), np.zeros(3), 0.01)
            self.diagonals.append(np.diag(self.pim.covariance))

    def test_mean(self) -> None:
        np.testing.assert_allclose(self.pim.theta, np.zeros(3), atol=1e-12)
        np.testing.assert_allclose(self.pim.delta_velocity, [0.0, 0.0, 9.81], atol=1e-9)
        np.testing.assert_allclose(self.pim.delta_position, [0.0, 0.0, 4.905], atol=1e-9)

    def test_bookkeeping(self) -> None:
        self.assertEqual(self.pim.k, 100)
        self.assertAlmostEqual(self.pim.delta_t_ij, 1.0, places=12)

    def test_covariance_diagonal_increases(self) -> None:
        diagonals = np.array(self.diagonals)
        self.assertTrue(np.all(np.diff(diagonals, axis=0) > 0.0))

    def test_rotation_variance(self) -> None:
        """With ω = 0, Var(θ) grows by Q_ω dt per sample."""
        np.testing.assert_allclose(np.diag(self.pim.covariance)[0:3], 1e-4 * np.ones(3),
                                   rtol=1e-9)

    def test_predict_stationary(self) -> None:
        """Specific force cancels gravity: the state does not move."""
        state_i = NavState.identity()
        state_j = self.pim.predict(state_i).state
        self.assertTrue(state_j.equals(state_i, tol=1e-9))

    def test_empty_window(self) -> None:
        pim = AggregateImuReadings(make_params())
        np.testing.assert_array_equal(pim.zeta, np.zeros(9))
        np.testing.assert_array_equal(pim.covariance, np.zeros((9, 9)))
        self.assertEqual(pim.k, 0)
        self.assertEqual(pim.delta_t_ij, 0.0)
        self.assertTrue(pim.predict(NavState.identity()).state.equals(NavState.identity()))


class TestUpdateEstimate(unittest.TestCase):
    """Test suite for the pure mean-propagation step."""

    def test_from_zero(self) -> None:
        a = np.array([1.0, 2.0, 3.0])
        w = np.array([0.1, -0.2, 0.3])
        dt = 0.1
        zeta = AggregateImuReadings.update_estimate(np.zeros(9), a, w, dt).zeta
        np.testing.assert_allclose(zeta[0:3], w * dt)
        np.testing.assert_allclose(zeta[3:6], 0.5 * a * dt * dt)
        np.testing.assert_allclose(zeta[6:9], a * dt)

    def test_rotated_frame(self) -> None:
        """Acceleration is rotated by Exp(θ) before integration."""
        theta = np.array([0.0, 0.0, np.pi / 2])
        zeta = np.r_[theta, np.zeros(6)]
        result = AggregateImuReadings.update_estimate(
            zeta, np.array([1.0, 0.0, 0.0]), np.zeros(3), 1.0).zeta
        np.testing.assert_allclose(result[6:9], [0.0, 1.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(result[3:6], [0.0, 0.5, 0.0], atol=1e-12)

    def test_oblique_rotated_frame(self) -> None:
        theta = np.array([0.4, -1.1, 2.0])
        a = np.array([0.3, -0.7, 9.8])
        dt = 0.01
        result = AggregateImuReadings.update_estimate(
            np.r_[theta, np.zeros(6)], a, np.zeros(3), dt).zeta
        np.testing.assert_allclose(result[6:9], rotate(expmap(theta), a * dt), atol=1e-14)
        np.testing.assert_allclose(result[3:6], 0.5 * dt * rotate(expmap(theta), a * dt),
                                   atol=1e-14)

    def test_pure(self) -> None:
        zeta = np.arange(9.0) * 0.1
        before = zeta.copy()
        AggregateImuReadings.update_estimate(zeta, np.ones(3), np.ones(3), 0.01,
                                             compute_jacobians=True)
        np.testing.assert_array_equal(zeta, before)

    def test_no_jacobians_by_default(self) -> None:
        update = AggregateImuReadings.update_estimate(np.zeros(9), np.ones(3), np.ones(3), 0.01)
        self.assertIsNone(update.jacobians)

    def test_jacobian_shapes(self) -> None:
        update = AggregateImuReadings.update_estimate(
            np.zeros(9), np.ones(3), np.ones(3), 0.01, compute_jacobians=True)
        self.assertEqual(update.jacobians.A.shape, (9, 9))
        self.assertEqual(update.jacobians.B_acc.shape, (9, 3))
        self.assertEqual(update.jacobians.B_omega.shape, (9, 3))

    def test_invalid_inputs(self) -> None:
        with pytest.raises(ValueError, match="dt"):
            AggregateImuReadings.update_estimate(np.zeros(9), np.zeros(3), np.zeros(3), 0.0)
        with pytest.raises(ValueError, match="zeta"):
            AggregateImuReadings.update_estimate(np.zeros(6), np.zeros(3), np.zeros(3), 0.01)
        with pytest.raises(ValueError, match="corrected_acc"):
            AggregateImuReadings.update_estimate(np.zeros(9), np.zeros(2), np.zeros(3), 0.01)


class TestIntegrateMeasurement(unittest.TestCase):
    """Test suite for accumulation."""

    def test_covariance_psd_and_symmetric(self) -> None:
        rng = np.random.default_rng(7)
        pim = AggregateImuReadings(make_params(1e-3))
        for _ in range(200):
            pim.integrate_measurement(
                rng.normal(size=3) + np.array([0.0, 0.0, 9.81]),
                rng.uniform(-1.0, 1.0, 3),
                rng.uniform(0.001, 0.02),
            )
            cov = pim.covariance
            np.testing.assert_array_equal(cov, cov.T)
            eigvals = np.linalg.eigvalsh(cov)
            self.assertGreaterEqual(eigvals[0], -1e-12 * eigvals[-1])

    def test_bookkeeping_irregular_dt(self) -> None:
        rng = np.random.default_rng(1)
        dts = rng.uniform(0.001, 0.02, 57)
        pim = AggregateImuReadings(make_params())
        for dt in dts:
            pim.integrate_measurement(np.zeros(3), np.zeros(3), dt)
        self.assertEqual(pim.k, 57)
        self.assertAlmostEqual(pim.delta_t_ij, math.fsum(dts), places=12)

    def test_rejects_non_positive_dt(self) -> None:
        pim = AggregateImuReadings(make_params())
        pim.integrate_measurement(np.array([0.0, 0.0, 9.81]), np.zeros(3), 0.01)
        zeta, cov = pim.zeta, pim.covariance

        for bad_dt in [0.0, -0.01, float('nan')]:
            with pytest.raises(ValueError, match="dt must be positive"):
                pim.integrate_measurement(np.zeros(3), np.zeros(3), bad_dt)

        # Rejected samples leave the window untouched
        np.testing.assert_array_equal(pim.zeta, zeta)
        np.testing.assert_array_equal(pim.covariance, cov)
        self.assertEqual(pim.k, 1)

    def test_rejects_non_finite_sample(self) -> None:
        pim = AggregateImuReadings(make_params())
        with pytest.raises(ValueError, match="finite"):
            pim.integrate_measurement(np.array([np.inf, 0.0, 0.0]), np.zeros(3), 0.01)
        self.assertEqual(pim.k, 0)

    def test_bias_is_subtracted(self) -> None:
        bias = ImuBias(np.array([0.1, -0.2, 0.3]), np.array([0.01, 0.02, -0.03]))
        biased = AggregateImuReadings(make_params(), bias)
        clean = AggregateImuReadings(make_params())
        acc = np.array([0.5, 0.2, 9.7])
        omega = np.array([0.1, -0.1, 0.2])
        for _ in range(20):
            biased.integrate_measurement(acc + bias.accelerometer, omega + bias.gyroscope, 0.01)
            clean.integrate_measurement(acc, omega, 0.01)
        np.testing.assert_allclose(biased.zeta, clean.zeta, atol=1e-12)

    def test_batch_matches_loop(self) -> None:
        rng = np.random.default_rng(5)
        accs = rng.normal(size=(30, 3))
        omegas = rng.normal(size=(30, 3)) * 0.1
        batch = AggregateImuReadings(make_params())
        batch.integrate_measurements(accs, omegas, 0.005)
        loop = AggregateImuReadings(make_params())
        for acc, omega in zip(accs, omegas):
            loop.integrate_measurement(acc, omega, 0.005)
        np.testing.assert_array_equal(batch.zeta, loop.zeta)
        np.testing.assert_array_equal(batch.covariance, loop.covariance)

    def test_batch_shape_mismatch(self) -> None:
        pim = AggregateImuReadings(make_params())
        with pytest.raises(ValueError, match="dts"):
            pim.integrate_measurements(np.zeros((4, 3)), np.zeros((4, 3)), np.ones(3) * 0.01)

    def test_psd_drift_warning(self) -> None:
        pim = AggregateImuReadings(make_params())
        pim._cov = -1e-3 * np.eye(9)
        with pytest.warns(RuntimeWarning, match="positive semi-definiteness"):
            pim.integrate_measurement(np.zeros(3), np.zeros(3), 0.01)

    def test_constructor_types(self) -> None:
        with pytest.raises(TypeError, match="params"):
            AggregateImuReadings({"n_gravity": GRAVITY_ENU})
        with pytest.raises(TypeError, match="estimated_bias"):
            AggregateImuReadings(make_params(), np.zeros(6))

    def test_params_shared_not_modified(self) -> None:
        params = make_params()
        first = AggregateImuReadings(params)
        second = AggregateImuReadings(params)
        first.integrate_measurement(np.ones(3), np.ones(3), 0.01)
        self.assertIs(second.params, params)
        np.testing.assert_array_equal(params.accelerometer_covariance, 1e-4 * np.eye(3))
        np.testing.assert_array_equal(second.zeta, np.zeros(9))


class TestSubdivision:
    """Splitting an interval converges to the single-step result."""

    @staticmethod
    def _difference(dt):
        acc = np.array([0.5, -0.3, 9.8])
        omega = np.array([0.3, -0.2, 0.5])
        whole = AggregateImuReadings.update_estimate(np.zeros(9), acc, omega, dt).zeta
        half = AggregateImuReadings.update_estimate(np.zeros(9), acc, omega, dt / 2).zeta
        half = AggregateImuReadings.update_estimate(half, acc, omega, dt / 2).zeta
        return np.linalg.norm(whole - half)

    def test_converges(self):
        coarse = self._difference(0.1)
        fine = self._difference(0.01)
        assert fine < coarse / 50.0
        assert fine < 1e-3

    def test_constant_rate_rotation_exact(self):
        """Constant ω: θ after two half steps equals ω dt."""
        omega = np.array([0.3, -0.2, 0.5])
        zeta = np.zeros(9)
        for _ in range(10):
            zeta = AggregateImuReadings.update_estimate(zeta, np.zeros(3), omega, 0.1).zeta
        np.testing.assert_allclose(zeta[0:3], omega * 1.0, atol=1e-12)


class TestPredict(unittest.TestCase):
    """Test suite for predict() and compute_error()."""

    def test_zero_rotation_kinematics(self) -> None:
        """Constant navigation acceleration without rotation integrates exactly."""
        params = PreintegrationParams.make_shared_u(9.81)
        a_n = np.array([1.0, 0.5, -0.2])
        v0 = np.array([2.0, -1.0, 0.5])
        pim = AggregateImuReadings(params)
        for _ in range(100):
            pim.integrate_measurement(a_n - params.n_gravity, np.zeros(3), 0.01)

        state_i = NavState(np.eye(3), np.array([10.0, 20.0, 30.0]), v0)
        state_j = pim.predict(state_i).state
        T = 1.0
        np.testing.assert_allclose(state_j.velocity, v0 + a_n * T, atol=1e-9)
        np.testing.assert_allclose(
            state_j.position, state_i.position + v0 * T + 0.5 * a_n * T * T, atol=1e-9)
        np.testing.assert_allclose(state_j.attitude, np.eye(3), atol=1e-12)

    def test_rotated_start(self) -> None:
        """Gravity enters through the starting attitude."""
        params = PreintegrationParams.make_shared_u(9.81)
        R_i = expmap(np.array([0.2, -0.3, 0.4]))
        pim = AggregateImuReadings(params)
        f_b = R_i.T @ (-params.n_gravity)
        for _ in range(50):
            pim.integrate_measurement(f_b, np.zeros(3), 0.02)
        state_i = NavState(R_i, np.zeros(3), np.zeros(3))
        self.assertTrue(pim.predict(state_i).state.equals(state_i, tol=1e-9))

    def test_constant_twist(self) -> None:
        """Circle at constant body rate and body velocity."""
        params = PreintegrationParams.make_shared_u(9.81)
        w = np.array([0.0, 0.0, 0.5])
        v_b = np.array([1.0, 0.0, 0.0])
        pim = AggregateImuReadings(params)
        dt = 0.001
        for k in range(1000):
            R = expmap(w * k * dt)
            a_n = R @ np.cross(w, v_b)
            pim.integrate_measurement(R.T @ (a_n - params.n_gravity), w, dt)

        T = pim.delta_t_ij
        state_i = NavState(np.eye(3), np.zeros(3), v_b)
        expected = NavState(expmap(w * T), right_jacobian(-w * T) @ v_b * T,
                            expmap(w * T) @ v_b)
        error = pim.predict(state_i).state.local_coordinates(expected)
        # Left-point sampling: error is O(dt)
        self.assertLess(np.linalg.norm(error), 2e-3)

    def test_predict_does_not_mutate(self) -> None:
        pim = AggregateImuReadings(make_params())
        pim.integrate_measurement(np.array([0.1, 0.2, 9.8]), np.array([0.1, 0.0, 0.0]), 0.01)
        zeta, cov = pim.zeta, pim.covariance
        pim.predict(NavState.from_vector(np.ones(3), np.ones(3), np.ones(3)),
                    compute_jacobians=True)
        np.testing.assert_array_equal(pim.zeta, zeta)
        np.testing.assert_array_equal(pim.covariance, cov)

    def test_compute_error_zero_for_perfect_data(self) -> None:
        params = PreintegrationParams.make_shared_u(9.81)
        a_n = np.array([0.3, -0.1, 0.2])
        state_i = NavState.from_vector(np.zeros(3), np.array([1.0, 2.0, 3.0]),
                                       np.array([0.5, 0.0, 0.0]))
        pim = AggregateImuReadings(params)
        for _ in range(40):
            pim.integrate_measurement(a_n - params.n_gravity, np.zeros(3), 0.025)
        T = 1.0
        state_j = NavState(np.eye(3),
                           state_i.position + state_i.velocity * T + 0.5 * a_n * T * T,
                           state_i.velocity + a_n * T)
        np.testing.assert_allclose(pim.compute_error(state_i, state_j), np.zeros(9), atol=1e-9)


class TestBiasCorrection(unittest.TestCase):
    """First-order bias correction against re-integration."""

    def setUp(self) -> None:
        self.params = make_params()
        self.acc = np.array([0.4, -0.3, 9.9])
        self.omega = np.array([0.0, 0.0, 0.1])

    def _integrate(self, bias: ImuBias) -> AggregateImuReadings:
        pim = AggregateImuReadings(self.params, bias)
        for _ in range(50):
            pim.integrate_measurement(self.acc, self.omega, 0.01)
        return pim

    def test_same_bias_no_correction(self) -> None:
        bias = ImuBias(np.array([0.01, 0.0, 0.0]), np.zeros(3))
        pim = self._integrate(bias)
        np.testing.assert_array_equal(pim.bias_corrected_delta(bias), pim.zeta)

    def test_bias_jacobian_matches_reintegration(self) -> None:
        base = self._integrate(ImuBias.zero())
        eps = 1e-5
        J_numerical = np.zeros((9, 6))
        for i in range(6):
            delta = np.zeros(6)
            delta[i] = eps
            plus = self._integrate(ImuBias.from_vector(delta)).zeta
            minus = self._integrate(ImuBias.from_vector(-delta)).zeta
            J_numerical[:, i] = (plus - minus) / (2 * eps)
        np.testing.assert_allclose(base.bias_jacobian, J_numerical, atol=5e-3)

    def test_corrected_delta_close_to_reintegration(self) -> None:
        base = self._integrate(ImuBias.zero())
        new_bias = ImuBias(np.array([0.02, -0.01, 0.03]), np.array([1e-3, -2e-3, 1e-3]))
        reintegrated = self._integrate(new_bias).zeta
        corrected = base.bias_corrected_delta(new_bias)
        np.testing.assert_allclose(corrected, reintegrated, atol=1e-4)
        # Correction is an improvement over the uncorrected delta
        self.assertLess(np.linalg.norm(corrected - reintegrated),
                        np.linalg.norm(base.zeta - reintegrated))


class TestNoiseModel(unittest.TestCase):
    """Test suite for noise_model() / preint_meas_cov()."""

    def setUp(self) -> None:
        self.pim = AggregateImuReadings(make_params())
        for _ in range(100):
            self.pim.integrate_measurement(np.array([0.1, 0.0, 9.81]),
                                           np.array([0.2, -0.1, 0.3]), 0.01)

    def test_default_returns_accumulated_covariance(self) -> None:
        model = self.pim.noise_model()
        self.assertIsInstance(model, GaussianNoiseModel)
        self.assertEqual(model.dim, 9)
        np.testing.assert_array_equal(model.covariance, self.pim.covariance)
        np.testing.assert_array_equal(self.pim.preint_meas_cov(), self.pim.covariance)

    def test_retract_corrected(self) -> None:
        H = self.pim.retract_jacobian()
        expected = H @ self.pim.covariance @ H.T
        np.testing.assert_allclose(self.pim.preint_meas_cov(retract_corrected=True),
                                   0.5 * (expected + expected.T), atol=1e-18)
        # Rotation of position/velocity blocks preserves their traces
        corrected = self.pim.preint_meas_cov(retract_corrected=True)
        self.assertAlmostEqual(np.trace(corrected[3:6, 3:6]),
                               np.trace(self.pim.covariance[3:6, 3:6]), places=15)
        self.assertFalse(np.allclose(corrected, self.pim.covariance, rtol=1e-6, atol=0.0))

    def test_retract_jacobian_identity_at_zero_rotation(self) -> None:
        pim = AggregateImuReadings(make_params())
        pim.integrate_measurement(np.array([0.0, 0.0, 9.81]), np.zeros(3), 0.01)
        np.testing.assert_allclose(pim.retract_jacobian(), np.eye(9), atol=1e-15)
        np.testing.assert_allclose(pim.preint_meas_cov(True), pim.preint_meas_cov(), atol=1e-20)

    def test_information_available(self) -> None:
        model = self.pim.noise_model()
        r = np.ones(9) * 1e-3
        self.assertGreater(model.mahalanobis_distance(r), 0.0)

    def test_empty_window_singular(self) -> None:
        model = AggregateImuReadings(make_params()).noise_model()
        np.testing.assert_array_equal(model.covariance, np.zeros((9, 9)))
        with pytest.raises(np.linalg.LinAlgError):
            model.whiten(np.zeros(9))


if __name__ == "__main__":
    unittest.main()
