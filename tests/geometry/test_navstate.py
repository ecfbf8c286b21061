"""
Unit tests for imu_preintegration/geometry/navstate.py.

Run with: pytest tests/geometry/test_navstate.py -v
"""

import unittest

import numpy as np
import pytest

from imu_preintegration.geometry import NavState, compose, expmap, rotate


class TestNavStateConstruction(unittest.TestCase):
    """Test suite for NavState validation."""

    def test_identity(self) -> None:
        state = NavState.identity()
        np.testing.assert_array_equal(state.attitude, np.eye(3))
        np.testing.assert_array_equal(state.position, np.zeros(3))
        np.testing.assert_array_equal(state.velocity, np.zeros(3))

    def test_lists_are_converted(self) -> None:
        state = NavState(np.eye(3).tolist(), [1, 2, 3], [0, 0, 1])
        self.assertEqual(state.position.dtype, np.float64)

    def test_invalid_attitude(self) -> None:
        with pytest.raises(ValueError, match="rotation matrix"):
            NavState(2.0 * np.eye(3), np.zeros(3), np.zeros(3))

    def test_invalid_shapes(self) -> None:
        with pytest.raises(ValueError, match="position"):
            NavState(np.eye(3), np.zeros(2), np.zeros(3))
        with pytest.raises(ValueError, match="velocity"):
            NavState(np.eye(3), np.zeros(3), np.zeros(4))

    def test_frozen(self) -> None:
        state = NavState.identity()
        with pytest.raises(AttributeError):
            state.position = np.ones(3)

    def test_body_velocity(self) -> None:
        state = NavState.from_vector(np.array([0.0, 0.0, np.pi / 2]), np.zeros(3),
                                     np.array([0.0, 1.0, 0.0]))
        np.testing.assert_allclose(state.body_velocity(), [1.0, 0.0, 0.0], atol=1e-12)


class TestRetract(unittest.TestCase):
    """Test suite for retract / local_coordinates."""

    def setUp(self) -> None:
        self.state = NavState.from_vector(
            np.array([0.3, -0.1, 0.2]), np.array([1.0, 2.0, 3.0]), np.array([0.1, 0.2, 0.3]))

    def test_retract_zero(self) -> None:
        self.assertTrue(self.state.retract(np.zeros(9)).equals(self.state))

    def test_retract_body_frame(self) -> None:
        """Position and velocity increments are expressed in the body frame."""
        xi = np.r_[np.zeros(3), [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
        moved = self.state.retract(xi)
        R = self.state.attitude
        np.testing.assert_allclose(moved.position, self.state.position + R[:, 0])
        np.testing.assert_allclose(moved.velocity, self.state.velocity + R[:, 1])
        np.testing.assert_allclose(moved.attitude, R)

    def test_retract_rotation(self) -> None:
        dtheta = np.array([0.0, 0.1, 0.0])
        moved = self.state.retract(np.r_[dtheta, np.zeros(6)])
        np.testing.assert_allclose(moved.attitude, self.state.attitude @ expmap(dtheta))

    def test_local_coordinates_inverts_retract(self) -> None:
        xi = np.array([0.1, -0.2, 0.3, 1.0, -1.0, 0.5, 0.2, 0.0, -0.3])
        other = self.state.retract(xi)
        np.testing.assert_allclose(self.state.local_coordinates(other), xi, atol=1e-12)

    def test_local_coordinates_close_to_half_turn(self) -> None:
        axis = np.array([2.0, -1.0, 2.0]) / 3.0
        xi = np.r_[(np.pi - 1e-5) * axis, 0.5, 0.0, -0.5, 0.0, 1.0, 0.0]
        other = self.state.retract(xi)
        np.testing.assert_allclose(self.state.local_coordinates(other), xi, atol=1e-8)

    def test_retract_matches_rotation_helpers(self) -> None:
        xi = np.array([0.2, 0.1, -0.3, 1.0, 2.0, 3.0, -1.0, 0.5, 0.0])
        R = self.state.attitude
        moved = self.state.retract(xi)
        np.testing.assert_allclose(moved.attitude, compose(R, expmap(xi[0:3])))
        np.testing.assert_allclose(moved.position, self.state.position + rotate(R, xi[3:6]))
        np.testing.assert_allclose(moved.velocity, self.state.velocity + rotate(R, xi[6:9]))

    def test_local_coordinates_self_is_zero(self) -> None:
        np.testing.assert_allclose(self.state.local_coordinates(self.state), np.zeros(9), atol=1e-15)

    def test_invalid_tangent(self) -> None:
        with pytest.raises(ValueError, match="shape"):
            self.state.retract(np.zeros(6))

    def test_to_vector(self) -> None:
        vec = self.state.to_vector()
        np.testing.assert_allclose(vec[0:3], [0.3, -0.1, 0.2], atol=1e-12)
        np.testing.assert_array_equal(vec[3:6], self.state.position)
        np.testing.assert_array_equal(vec[6:9], self.state.velocity)


if __name__ == "__main__":
    unittest.main()
