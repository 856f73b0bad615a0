"""
Unit tests for the direct lateration solvers.
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from radiopos.errors import PositionEstimationError
from radiopos.estimators.lateration import (
    homogeneous_linear_lateration,
    lateration_residuals,
    linear_lateration,
    nonlinear_lateration,
)


class TestLinearLateration(unittest.TestCase):
    """Test linear inhomogeneous and homogeneous solvers."""

    def setUp(self):
        self.anchors_2d = np.array([[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0]])
        self.true_2d = np.array([3.0, 4.0])
        self.ranges_2d = np.linalg.norm(self.anchors_2d - self.true_2d, axis=1)

        self.anchors_3d = np.array(
            [[0.0, 0.0, 0.0], [10.0, 0.0, 0.0], [0.0, 10.0, 0.0], [0.0, 0.0, 10.0]]
        )
        self.true_3d = np.array([2.0, 3.0, 4.0])
        self.ranges_3d = np.linalg.norm(self.anchors_3d - self.true_3d, axis=1)

    def test_linear_2d(self):
        x = linear_lateration(self.anchors_2d, self.ranges_2d)
        assert_allclose(x, self.true_2d, atol=1e-9)

    def test_linear_3d_minimal(self):
        x = linear_lateration(self.anchors_3d, self.ranges_3d)
        assert_allclose(x, self.true_3d, atol=1e-9)

    def test_homogeneous_2d(self):
        x = homogeneous_linear_lateration(self.anchors_2d, self.ranges_2d)
        assert_allclose(x, self.true_2d, atol=1e-8)

    def test_homogeneous_3d_minimal(self):
        x = homogeneous_linear_lateration(self.anchors_3d, self.ranges_3d)
        assert_allclose(x, self.true_3d, atol=1e-8)

    def test_too_few_samples(self):
        with self.assertRaises(PositionEstimationError):
            linear_lateration(self.anchors_2d[:2], self.ranges_2d[:2])
        with self.assertRaises(PositionEstimationError):
            homogeneous_linear_lateration(self.anchors_3d[:3], self.ranges_3d[:3])

    def test_collinear_anchors_are_degenerate(self):
        anchors = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [3.0, 0.0]])
        ranges = np.linalg.norm(anchors - np.array([1.5, 2.0]), axis=1)
        with self.assertRaises(PositionEstimationError):
            linear_lateration(anchors, ranges)

    def test_mismatched_shapes(self):
        with self.assertRaises(ValueError):
            linear_lateration(self.anchors_2d, self.ranges_2d[:3])

    def test_residuals(self):
        residuals = lateration_residuals(self.true_2d, self.anchors_2d, self.ranges_2d + 0.5)
        assert_allclose(residuals, 0.5 * np.ones(4), atol=1e-12)


class TestNonlinearLateration(unittest.TestCase):
    """Test weighted Gauss-Newton / Levenberg-Marquardt lateration."""

    def setUp(self):
        self.anchors = np.array(
            [[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0], [5.0, -3.0]]
        )
        self.true_pos = np.array([4.0, 6.0])
        self.ranges = np.linalg.norm(self.anchors - self.true_pos, axis=1)

    def test_lm_noiseless(self):
        result = nonlinear_lateration(
            self.anchors, self.ranges, initial_position=np.array([1.0, 1.0])
        )
        assert_allclose(result.position, self.true_pos, atol=1e-6)
        self.assertTrue(result.converged)
        self.assertLess(result.cost, 1e-10)

    def test_gauss_newton_noiseless(self):
        result = nonlinear_lateration(
            self.anchors, self.ranges, initial_position=np.array([6.0, 4.0]), method="gn"
        )
        assert_allclose(result.position, self.true_pos, atol=1e-6)

    def test_default_initial_position_uses_linear_solution(self):
        result = nonlinear_lateration(self.anchors, self.ranges)
        assert_allclose(result.position, self.true_pos, atol=1e-6)

    def test_covariance_from_standard_deviations(self):
        stds = 0.1 * np.ones(len(self.anchors))
        result = nonlinear_lateration(self.anchors, self.ranges, standard_deviations=stds)

        diff = self.true_pos - self.anchors
        J = diff / np.linalg.norm(diff, axis=1, keepdims=True)
        expected = np.linalg.inv(J.T @ J / 0.01)

        self.assertEqual(result.covariance.shape, (2, 2))
        assert_allclose(result.covariance, expected, rtol=1e-5)

    def test_weights_favor_precise_samples(self):
        ranges = self.ranges.copy()
        ranges[4] += 2.0
        stds = np.array([0.01, 0.01, 0.01, 0.01, 100.0])

        weighted = nonlinear_lateration(self.anchors, ranges, standard_deviations=stds)
        uniform = nonlinear_lateration(self.anchors, ranges)

        weighted_error = np.linalg.norm(weighted.position - self.true_pos)
        uniform_error = np.linalg.norm(uniform.position - self.true_pos)
        self.assertLess(weighted_error, uniform_error)
        self.assertLess(weighted_error, 1e-2)

    def test_no_covariance_requested(self):
        result = nonlinear_lateration(self.anchors, self.ranges, return_covariance=False)
        self.assertIsNone(result.covariance)

    def test_invalid_method(self):
        with self.assertRaises(ValueError):
            nonlinear_lateration(self.anchors, self.ranges, method="bfgs")

    def test_non_positive_std_rejected(self):
        stds = np.ones(len(self.anchors))
        stds[0] = 0.0
        with self.assertRaises(ValueError):
            nonlinear_lateration(self.anchors, self.ranges, standard_deviations=stds)


if __name__ == "__main__":
    unittest.main()
