"""
Unit tests for the random-sampling robust lateration solvers.
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from radiopos.errors import IllegalArgumentError, RobustEstimationError
from radiopos.estimators.robust_lateration import (
    LmedsLaterationSolver,
    MsacLaterationSolver,
    PromedsLaterationSolver,
    ProsacLaterationSolver,
    RansacLaterationSolver,
)
from radiopos.events import EstimateEnded, EstimateStarted, NextIteration, ProgressChanged


def _grid_scene():
    """Ten anchors around (5, 5) with three NLOS-biased ranges."""
    anchors = np.array([
        [0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0], [5.0, 0.0],
        [10.0, 5.0], [5.0, 10.0], [0.0, 5.0], [2.0, 8.0], [8.0, 2.0],
    ])
    true_pos = np.array([4.0, 6.0])
    ranges = np.linalg.norm(anchors - true_pos, axis=1)
    outliers = np.zeros(len(anchors), dtype=bool)
    outliers[[1, 5, 9]] = True
    ranges[outliers] += np.array([6.0, 9.0, 12.0])
    return anchors, ranges, true_pos, outliers


class TestNoiselessRecovery(unittest.TestCase):
    """Every method recovers the exact position from clean minimal 3D data."""

    def setUp(self):
        self.anchors = np.array(
            [[0.0, 0.0, 0.0], [10.0, 0.0, 0.0], [0.0, 10.0, 0.0], [0.0, 0.0, 10.0]]
        )
        self.true_pos = np.array([2.0, 3.0, 4.0])
        self.ranges = np.linalg.norm(self.anchors - self.true_pos, axis=1)

    def test_all_methods(self):
        for solver_class in (
            RansacLaterationSolver,
            MsacLaterationSolver,
            LmedsLaterationSolver,
            ProsacLaterationSolver,
            PromedsLaterationSolver,
        ):
            with self.subTest(method=solver_class.__name__):
                result = solver_class(self.anchors, self.ranges, seed=0).solve()
                assert_allclose(result.position, self.true_pos, atol=1e-6)
                self.assertEqual(result.inliers_data.num_inliers, 4)

    def test_homogeneous_solver(self):
        result = RansacLaterationSolver(
            self.anchors, self.ranges, use_homogeneous_linear_solver=True, seed=0
        ).solve()
        assert_allclose(result.position, self.true_pos, atol=1e-6)

    def test_nonlinear_only_preliminary_solutions(self):
        result = LmedsLaterationSolver(
            self.anchors,
            self.ranges,
            use_linear_solver=False,
            initial_position=np.array([3.0, 3.0, 3.0]),
            seed=0,
        ).solve()
        assert_allclose(result.position, self.true_pos, atol=1e-6)


class TestOutlierRejection(unittest.TestCase):
    """Robust methods discard NLOS-biased samples."""

    def setUp(self):
        self.anchors, self.ranges, self.true_pos, self.outliers = _grid_scene()

    def test_ransac(self):
        result = RansacLaterationSolver(
            self.anchors, self.ranges, threshold=0.1, confidence=1.0, max_iterations=200, seed=1
        ).solve()
        assert_allclose(result.position, self.true_pos, atol=1e-6)
        np.testing.assert_array_equal(result.inliers_data.inliers, ~self.outliers)
        self.assertTrue(result.refined)

    def test_msac(self):
        result = MsacLaterationSolver(
            self.anchors, self.ranges, threshold=0.1, confidence=1.0, max_iterations=200, seed=2
        ).solve()
        assert_allclose(result.position, self.true_pos, atol=1e-6)
        np.testing.assert_array_equal(result.inliers_data.inliers, ~self.outliers)

    def test_lmeds(self):
        result = LmedsLaterationSolver(
            self.anchors, self.ranges, confidence=1.0, max_iterations=200, seed=3
        ).solve()
        assert_allclose(result.position, self.true_pos, atol=1e-6)
        self.assertFalse(np.any(result.inliers_data.inliers[self.outliers]))

    def test_prosac_first_subset_from_best_scores(self):
        scores = np.where(self.outliers, 0.0, 1.0)
        solver = ProsacLaterationSolver(
            self.anchors, self.ranges, quality_scores=scores, threshold=0.1, seed=4
        )

        first = solver._draw_subset(0)
        self.assertFalse(np.any(self.outliers[first]))

        result = solver.solve()
        assert_allclose(result.position, self.true_pos, atol=1e-6)
        np.testing.assert_array_equal(result.inliers_data.inliers, ~self.outliers)
        # w = 0.7 with the default confidence
        self.assertLessEqual(result.iterations, 12)

    def test_promeds_stops_on_stop_threshold(self):
        scores = np.where(self.outliers, -1.0, 1.0)
        result = PromedsLaterationSolver(
            self.anchors, self.ranges, quality_scores=scores, seed=5
        ).solve()
        assert_allclose(result.position, self.true_pos, atol=1e-6)
        self.assertEqual(result.iterations, 1)

    def test_no_refinement_keeps_no_covariance(self):
        result = RansacLaterationSolver(
            self.anchors, self.ranges, threshold=0.1, confidence=1.0, max_iterations=200,
            refine_result=False, seed=6,
        ).solve()
        self.assertFalse(result.refined)
        self.assertIsNone(result.covariance)

    def test_refined_covariance(self):
        stds = 0.05 * np.ones(len(self.ranges))
        result = RansacLaterationSolver(
            self.anchors, self.ranges, distance_standard_deviations=stds,
            threshold=0.1, confidence=1.0, max_iterations=200, seed=7,
        ).solve()
        self.assertEqual(result.covariance.shape, (2, 2))
        self.assertTrue(np.all(np.linalg.eigvalsh(result.covariance) > 0))

    def test_keep_covariance_disabled(self):
        result = RansacLaterationSolver(
            self.anchors, self.ranges, threshold=0.1, confidence=1.0, max_iterations=200,
            keep_covariance=False, seed=8,
        ).solve()
        self.assertTrue(result.refined)
        self.assertIsNone(result.covariance)


class TestSolverEvents(unittest.TestCase):
    """Test listener notifications."""

    def setUp(self):
        self.anchors, self.ranges, _, _ = _grid_scene()

    def test_event_sequence(self):
        events = []
        solver = RansacLaterationSolver(
            self.anchors, self.ranges, threshold=0.1, max_iterations=40,
            confidence=1.0, progress_delta=0.1, listener=events.append, seed=0,
        )
        solver.solve()

        self.assertIsInstance(events[0], EstimateStarted)
        self.assertIsInstance(events[-1], EstimateEnded)
        self.assertIs(events[0].estimator, solver)

        iterations = [e.iteration for e in events if isinstance(e, NextIteration)]
        self.assertEqual(iterations, list(range(1, 41)))

        progress = [e.progress for e in events if isinstance(e, ProgressChanged)]
        self.assertEqual(progress[-1], 1.0)
        self.assertTrue(all(b > a for a, b in zip(progress, progress[1:])))
        self.assertTrue(all(b - a >= 0.1 - 1e-12 for a, b in zip(progress[:-2], progress[1:-1])))

    def test_progress_delta_one_reports_only_completion(self):
        events = []
        RansacLaterationSolver(
            self.anchors, self.ranges, threshold=0.1, max_iterations=20,
            confidence=1.0, progress_delta=1.0, listener=events.append, seed=0,
        ).solve()
        progress = [e.progress for e in events if isinstance(e, ProgressChanged)]
        self.assertEqual(progress, [1.0])


class TestSolverErrors(unittest.TestCase):
    """Test validation and failure modes."""

    def setUp(self):
        self.anchors, self.ranges, _, _ = _grid_scene()

    def test_too_few_samples(self):
        with self.assertRaises(RobustEstimationError):
            RansacLaterationSolver(self.anchors[:2], self.ranges[:2]).solve()

    def test_subset_larger_than_samples(self):
        solver = LmedsLaterationSolver(
            self.anchors[:4], self.ranges[:4], preliminary_subset_size=5
        )
        with self.assertRaises(RobustEstimationError):
            solver.solve()

    def test_degenerate_geometry(self):
        anchors = np.column_stack([np.arange(6.0), np.zeros(6)])
        ranges = np.linalg.norm(anchors - np.array([2.5, 3.0]), axis=1)
        with self.assertRaises(RobustEstimationError):
            LmedsLaterationSolver(anchors, ranges, max_iterations=20, seed=0).solve()

    def test_invalid_arguments(self):
        with self.assertRaises(IllegalArgumentError):
            RansacLaterationSolver(self.anchors, self.ranges, threshold=0.0)
        with self.assertRaises(IllegalArgumentError):
            LmedsLaterationSolver(self.anchors, self.ranges, stop_threshold=-1.0)
        with self.assertRaises(IllegalArgumentError):
            RansacLaterationSolver(self.anchors, self.ranges, confidence=1.5)
        with self.assertRaises(IllegalArgumentError):
            RansacLaterationSolver(self.anchors, self.ranges, max_iterations=0)
        with self.assertRaises(IllegalArgumentError):
            RansacLaterationSolver(self.anchors, self.ranges, preliminary_subset_size=2)
        with self.assertRaises(IllegalArgumentError):
            RansacLaterationSolver(self.anchors, self.ranges[:5])
        with self.assertRaises(IllegalArgumentError):
            RansacLaterationSolver(
                self.anchors, self.ranges, distance_standard_deviations=np.zeros(10)
            )

    def test_required_iterations(self):
        solver = RansacLaterationSolver(self.anchors, self.ranges, confidence=0.99)
        # w = 0.5, s = 3: log(0.01) / log(1 - 0.125)
        expected = int(np.ceil(np.log(0.01) / np.log(1 - 0.125)))
        self.assertEqual(solver._required_iterations(5), expected)
        self.assertEqual(solver._required_iterations(10), 1)
        self.assertEqual(solver._required_iterations(0), solver.max_iterations)


if __name__ == "__main__":
    unittest.main()
