"""
Unit tests for evaluation metrics.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radiopos.eval.metrics import (
    compute_error_stats,
    compute_nees,
    compute_outlier_detection_stats,
    compute_position_errors,
    compute_rmse,
    failed_estimations,
)


class TestPositionErrors:
    def test_errors_and_rmse(self):
        truth = np.zeros((2, 2))
        estimated = np.array([[3.0, 4.0], [0.0, 0.0]])
        errors = compute_position_errors(truth, estimated)

        assert_allclose(errors, estimated)
        assert compute_rmse(errors) == pytest.approx(np.sqrt(25.0 / 4))
        assert_allclose(compute_rmse(errors, axis=1), [np.sqrt(12.5), 0.0])

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            compute_position_errors(np.zeros((2, 2)), np.zeros((2, 3)))

    def test_error_stats(self):
        errors = np.array([[3.0, 4.0], [0.0, 1.0], [0.0, 0.0]])
        stats = compute_error_stats(errors)
        assert stats["max"] == pytest.approx(5.0)
        assert stats["mean"] == pytest.approx(2.0)
        assert stats["median"] == pytest.approx(1.0)


class TestNees:
    def test_identity_covariance(self):
        truth = np.zeros((2, 2))
        estimated = np.array([[1.0, 1.0], [2.0, 0.0]])
        covariance = np.stack([np.eye(2), 4.0 * np.eye(2)])
        assert_allclose(compute_nees(truth, estimated, covariance), [2.0, 1.0])

    def test_singular_covariance_gives_nan(self):
        nees = compute_nees(np.zeros((1, 2)), np.ones((1, 2)), np.zeros((1, 2, 2)))
        assert np.isnan(nees[0])


class TestOutlierDetectionStats:
    def test_perfect_detection(self):
        outliers = np.array([False, True, False, True])
        stats = compute_outlier_detection_stats(~outliers, outliers)
        assert stats == {"precision": 1.0, "recall": 1.0, "false_rejections": 0}

    def test_partial_detection(self):
        outliers = np.array([True, True, False, False])
        inliers = np.array([False, True, False, True])
        stats = compute_outlier_detection_stats(inliers, outliers)
        assert stats["precision"] == pytest.approx(0.5)
        assert stats["recall"] == pytest.approx(0.5)
        assert stats["false_rejections"] == 1

    def test_nothing_rejected(self):
        stats = compute_outlier_detection_stats(np.ones(3, dtype=bool), np.zeros(3, dtype=bool))
        assert stats["precision"] == 1.0
        assert stats["recall"] == 1.0


class TestFailedEstimations:
    """Failed runs are stored as NaN rows and skipped by the metrics."""

    def setup_method(self):
        self.truth = np.zeros((3, 2))
        self.estimated = np.array([[3.0, 4.0], [np.nan, np.nan], [0.0, 1.0]])

    def test_failed_mask(self):
        assert_allclose(failed_estimations(self.estimated), [False, True, False])

    def test_error_stats_count_failures(self):
        errors = compute_position_errors(self.truth, self.estimated)
        stats = compute_error_stats(errors)
        assert stats["failures"] == 1
        assert stats["mean"] == pytest.approx(3.0)
        assert stats["max"] == pytest.approx(5.0)

    def test_all_failed(self):
        stats = compute_error_stats(np.full((2, 2), np.nan))
        assert stats == {"failures": 2}

    def test_rmse_skips_failed_rows(self):
        errors = compute_position_errors(self.truth, self.estimated)
        assert compute_rmse(errors) == pytest.approx(np.sqrt(26.0 / 4))
        assert_allclose(compute_rmse(errors, axis=0), [np.sqrt(4.5), np.sqrt(8.5)])

    def test_nees_without_covariance(self):
        covariance = np.stack([np.eye(2), np.eye(2), np.full((2, 2), np.nan)])
        nees = compute_nees(self.truth, self.estimated, covariance)
        assert nees[0] == pytest.approx(25.0)
        assert np.isnan(nees[1])
        assert np.isnan(nees[2])
