"""
Evaluation metrics for position estimates.

Position error statistics, covariance consistency (NEES) and outlier
detection quality of the robust estimators. A failed estimation is recorded
as a row of NaN; the metrics below skip such rows instead of failing.
"""

from typing import Dict, Optional, Union

import numpy as np


def failed_estimations(estimated: np.ndarray) -> np.ndarray:
    """Boolean mask of the rows of ``estimated`` that hold no position (NaN)."""
    estimated = np.asarray(estimated, dtype=float)
    if estimated.ndim == 1:
        return np.isnan(estimated)
    return np.any(np.isnan(estimated), axis=1)


def compute_position_errors(
    truth: np.ndarray, estimated: np.ndarray
) -> np.ndarray:
    """
    Compute position error vectors of a batch of estimations.

    Args:
        truth: True positions, shape (N, 2) or (N, 3)
        estimated: Estimated positions, same shape; NaN rows for failed runs

    Returns:
        errors: Error vectors ``estimated - truth``; failed rows stay NaN

    Raises:
        ValueError: If inputs have incompatible shapes
    """
    truth = np.asarray(truth, dtype=float)
    estimated = np.asarray(estimated, dtype=float)

    if truth.shape != estimated.shape:
        raise ValueError(
            f"Shape mismatch: truth {truth.shape} vs estimated {estimated.shape}"
        )

    return estimated - truth


def compute_rmse(errors: np.ndarray, axis: Optional[int] = None) -> Union[float, np.ndarray]:
    """
    Root Mean Square Error over the successful estimations.

    Args:
        errors: Error vectors, shape (N, d) or (N,); NaN rows are ignored
        axis: None for a scalar over everything, 0 per dimension, 1 per sample

    Returns:
        rmse: RMSE value(s); NaN when every estimation failed
    """
    errors = np.asarray(errors, dtype=float)
    if axis != 1 and errors.size > 0:
        errors = errors[~failed_estimations(errors)]
    if errors.size == 0:
        return float("nan")

    if axis is None:
        return float(np.sqrt(np.mean(errors**2)))
    return np.sqrt(np.mean(errors**2, axis=axis))


def compute_error_stats(errors: np.ndarray) -> Dict[str, float]:
    """
    Compute error magnitude statistics of the successful estimations.

    Args:
        errors: Error vectors, shape (N, d) or (N,); NaN rows count as failures

    Returns:
        stats: Dictionary with 'mean', 'median', 'std', 'rmse', 'p75', 'p90',
               'p95' and 'max' of the error magnitudes and the number of
               'failures'. Only 'failures' is present when every run failed.
    """
    errors = np.asarray(errors, dtype=float)
    failed = failed_estimations(errors)
    errors = errors[~failed]
    if len(errors) == 0:
        return {"failures": int(np.sum(failed))}

    if errors.ndim > 1:
        error_magnitudes = np.linalg.norm(errors, axis=1)
    else:
        error_magnitudes = np.abs(errors)

    return {
        "mean": float(np.mean(error_magnitudes)),
        "median": float(np.median(error_magnitudes)),
        "std": float(np.std(error_magnitudes)),
        "rmse": float(np.sqrt(np.mean(error_magnitudes**2))),
        "p75": float(np.percentile(error_magnitudes, 75)),
        "p90": float(np.percentile(error_magnitudes, 90)),
        "p95": float(np.percentile(error_magnitudes, 95)),
        "max": float(np.max(error_magnitudes)),
        "failures": int(np.sum(failed)),
    }


def compute_nees(
    truth: np.ndarray, estimated: np.ndarray, covariance: np.ndarray
) -> np.ndarray:
    """
    Normalized Estimation Error Squared of the reported position covariances.

        NEES = (x_est - x_true)ᵀ P⁻¹ (x_est - x_true)

    A covariance that honestly describes the estimation error gives NEES
    values whose mean is close to d.

    Args:
        truth: True positions, shape (N, d)
        estimated: Estimated positions, shape (N, d)
        covariance: Reported covariances, shape (N, d, d); NaN where the
            estimator gave none

    Returns:
        nees: NEES values, shape (N,); NaN for failed runs, missing or
            singular covariances
    """
    errors = compute_position_errors(truth, estimated)
    covariance = np.asarray(covariance, dtype=float)

    N, n = errors.shape
    if covariance.shape != (N, n, n):
        raise ValueError(
            f"covariance must have shape ({N}, {n}, {n}), got {covariance.shape}"
        )

    nees = np.full(N, np.nan)
    for i in range(N):
        if np.any(np.isnan(errors[i])) or np.any(np.isnan(covariance[i])):
            continue
        try:
            nees[i] = errors[i] @ np.linalg.solve(covariance[i], errors[i])
        except np.linalg.LinAlgError:
            continue

    return nees


def compute_outlier_detection_stats(
    inliers: np.ndarray, true_outliers: np.ndarray
) -> Dict[str, float]:
    """
    Compare the consensus of a robust estimator with the injected outliers.

    Args:
        inliers: Boolean inlier mask reported by the estimator, shape (N,)
        true_outliers: Boolean mask of the samples that really are outliers

    Returns:
        Dictionary with 'precision' and 'recall' of outlier detection and the
        'false_rejections' count (true inliers flagged as outliers).
        Precision is 1.0 when nothing was rejected.
    """
    inliers = np.asarray(inliers, dtype=bool)
    true_outliers = np.asarray(true_outliers, dtype=bool)
    if inliers.shape != true_outliers.shape:
        raise ValueError("inliers and true_outliers must have same shape")

    rejected = ~inliers
    detected = np.sum(rejected & true_outliers)
    precision = detected / np.sum(rejected) if np.any(rejected) else 1.0
    recall = detected / np.sum(true_outliers) if np.any(true_outliers) else 1.0

    return {
        "precision": float(precision),
        "recall": float(recall),
        "false_rejections": int(np.sum(rejected & ~true_outliers)),
    }
