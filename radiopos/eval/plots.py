"""
Visualization of robust positioning results.

All functions return matplotlib Figure objects for flexible display/saving.
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np

from radiopos.eval.metrics import failed_estimations

METHOD_COLORS = {
    "ransac": "tab:blue",
    "msac": "tab:cyan",
    "prosac": "tab:green",
    "lmeds": "tab:orange",
    "promeds": "tab:red",
    "sequential": "tab:purple",
    "direct": "tab:gray",
}


def plot_positioning_geometry(
    source_positions: np.ndarray,
    estimated_position: np.ndarray,
    true_position: Optional[np.ndarray] = None,
    coarse_position: Optional[np.ndarray] = None,
    sample_positions: Optional[np.ndarray] = None,
    sample_distances: Optional[np.ndarray] = None,
    inliers: Optional[np.ndarray] = None,
    title: str = "Robust Positioning",
) -> plt.Figure:
    """
    Plot sources, range circles and estimates in the horizontal plane.

    Args:
        source_positions: Source positions, shape (M, 2) or (M, 3)
        estimated_position: Final estimate, shape (2,) or (3,)
        true_position: Ground truth (optional)
        coarse_position: RSSI phase estimate of the sequential estimator (optional)
        sample_positions: Per-sample source positions, shape (N, d) (optional)
        sample_distances: Per-sample distances, shape (N,) (optional)
        inliers: Inlier mask over the samples, shape (N,) (optional)
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    source_positions = np.asarray(source_positions)
    fig, ax = plt.subplots(figsize=(10, 8))

    ax.plot(
        source_positions[:, 0],
        source_positions[:, 1],
        "s",
        color="blue",
        markersize=12,
        label="Sources",
    )
    for i, source in enumerate(source_positions):
        ax.text(source[0], source[1] + 0.5, f"S{i}", fontsize=10, ha="center", color="blue")

    # Range circles, green for inliers and red for outliers
    if sample_positions is not None and sample_distances is not None:
        if inliers is None:
            inliers = np.ones(len(sample_distances), dtype=bool)
        for position, distance, inlier in zip(sample_positions, sample_distances, inliers):
            ax.add_patch(
                plt.Circle(
                    (position[0], position[1]),
                    distance,
                    fill=False,
                    color="green" if inlier else "red",
                    linestyle="-" if inlier else "--",
                    alpha=0.4,
                )
            )

    if true_position is not None:
        ax.plot(true_position[0], true_position[1], "k*", markersize=16, label="True position")
    if coarse_position is not None:
        ax.plot(coarse_position[0], coarse_position[1], "o", color="orange",
                markersize=10, label="Coarse (RSSI)")
    ax.plot(estimated_position[0], estimated_position[1], "rx", markersize=14,
            markeredgewidth=3, label="Estimate")

    ax.set_xlabel("X (m)", fontsize=12)
    ax.set_ylabel("Y (m)", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)
    ax.axis("equal")

    plt.tight_layout()
    return fig


def plot_error_cdf(
    errors_dict: Dict[str, np.ndarray], title: str = "Positioning Error CDF"
) -> plt.Figure:
    """
    Plot the empirical CDF of the position error magnitude of each method.

    Failed estimations (NaN rows) count towards the total, so the curve of a
    method that sometimes fails levels off below 1; their number is shown in
    the legend.

    Args:
        errors_dict: Dictionary of error arrays {method name: errors}
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    fig, ax = plt.subplots(figsize=(10, 6))

    for i, (name, errors) in enumerate(errors_dict.items()):
        errors = np.asarray(errors, dtype=float)
        failed = failed_estimations(errors)
        valid = errors[~failed]
        if valid.ndim > 1:
            error_magnitudes = np.linalg.norm(valid, axis=1)
        else:
            error_magnitudes = np.abs(valid)

        sorted_errors = np.sort(error_magnitudes)
        cdf = np.arange(1, len(sorted_errors) + 1) / len(errors)

        label = name if not np.any(failed) else f"{name} ({int(np.sum(failed))} failed)"
        ax.step(
            sorted_errors,
            cdf,
            where="post",
            label=label,
            color=METHOD_COLORS.get(name, f"C{i % 10}"),
            linewidth=2,
        )

    ax.set_xlabel("Position Error (m)", fontsize=12)
    ax.set_ylabel("Fraction of Estimations", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)
    ax.set_xlim(left=0)
    ax.set_ylim([0, 1.05])

    plt.tight_layout()
    return fig


def save_figure(
    fig: plt.Figure,
    out_dir: Union[str, Path],
    name: str,
    formats: Tuple[str, ...] = ("svg", "pdf", "png"),
) -> List[Path]:
    """
    Save figure in multiple formats.

    Args:
        fig: Matplotlib figure to save
        out_dir: Output directory
        name: Base filename (without extension)
        formats: Tuple of format extensions

    Returns:
        paths: List of saved file paths
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for fmt in formats:
        filepath = out_dir / f"{name}.{fmt}"
        fig.savefig(filepath, dpi=150, bbox_inches="tight")
        paths.append(filepath)

    return paths
