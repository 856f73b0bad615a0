"""
Evaluation and visualization of position estimates.

Modules:
    metrics: Error metrics, NEES and outlier detection statistics
    plots: Geometry and error CDF figures
"""

from .metrics import (
    compute_error_stats,
    compute_nees,
    compute_outlier_detection_stats,
    compute_position_errors,
    compute_rmse,
    failed_estimations,
)
from .plots import plot_error_cdf, plot_positioning_geometry, save_figure

__all__ = [
    # Metrics
    "compute_position_errors",
    "compute_rmse",
    "compute_error_stats",
    "compute_nees",
    "compute_outlier_detection_stats",
    "failed_estimations",
    # Plots
    "plot_positioning_geometry",
    "plot_error_cdf",
    "save_figure",
]
