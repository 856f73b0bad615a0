"""
Robust Radio Positioning Example.

This script demonstrates:
    - Direct lateration breaking down when some ranging readings are NLOS
    - RANSAC, MSAC, PROSAC, LMedS and PROMedS rejecting those readings
    - The sequential estimator seeding ranging with a coarse RSSI position
    - Progress reporting through a listener
"""

import matplotlib.pyplot as plt
import numpy as np

from radiopos.eval import compute_outlier_detection_stats, plot_positioning_geometry, save_figure
from radiopos.events import ProgressChanged
from radiopos.position import (
    LaterationPositionEstimator,
    PhaseConfig,
    Ransac,
    RobustPositionEstimator,
    SequentialRobustPositionEstimator,
)
from radiopos.rf import ReadingType
from radiopos.sim import make_scenario


def example_direct_vs_robust():
    """Example 1: direct vs. robust lateration with 30% NLOS outliers."""
    print("=" * 70)
    print("Example 1: Direct vs. Robust Lateration with NLOS Outliers")
    print("=" * 70)

    scenario = make_scenario(
        num_sources=12, dimensions=2, ranging_std=0.05, outlier_fraction=0.3, seed=7
    )
    print(f"\nTrue position: {scenario.true_position}")
    print(f"Outlier readings: {np.flatnonzero(scenario.outliers)}")

    direct = LaterationPositionEstimator(
        dimensions=2, sources=scenario.sources, fingerprint=scenario.fingerprint
    )
    direct_pos = direct.estimate()
    print(f"\nDirect lateration: {direct_pos} "
          f"(error {np.linalg.norm(direct_pos - scenario.true_position):.3f} m)")

    print(f"\n{'Method':<10} {'Error (m)':>10} {'Inliers':>8} {'Recall':>8}")
    print("-" * 40)
    last = None
    for method in ("ransac", "msac", "prosac", "lmeds", "promeds"):
        estimator = RobustPositionEstimator(
            dimensions=2, method=method, sources=scenario.sources,
            fingerprint=scenario.fingerprint, seed=1,
        )
        if method in ("ransac", "msac", "prosac"):
            estimator.threshold = 0.3
        position = estimator.estimate()
        inliers = estimator.inliers_data
        stats = compute_outlier_detection_stats(inliers.inliers, scenario.outliers)
        error = np.linalg.norm(position - scenario.true_position)
        print(f"{method:<10} {error:>10.3f} {inliers.num_inliers:>8d} {stats['recall']:>8.2f}")
        last = estimator

    return scenario, last


def example_sequential():
    """Example 2: sequential RSSI then ranging estimation."""
    print("\n" + "=" * 70)
    print("Example 2: Sequential RSSI -> Ranging Estimation")
    print("=" * 70)

    scenario = make_scenario(
        num_sources=10,
        dimensions=2,
        reading_type=ReadingType.RANGING_AND_RSSI,
        ranging_std=0.05,
        rssi_std=2.0,
        outlier_fraction=0.2,
        seed=11,
    )

    progress = []

    def listener(event):
        if isinstance(event, ProgressChanged):
            progress.append(event.progress)

    estimator = SequentialRobustPositionEstimator(
        dimensions=2,
        sources=scenario.sources,
        fingerprint=scenario.fingerprint,
        listener=listener,
        rssi_config=PhaseConfig(method=Ransac(threshold=3.0)),
        ranging_config=PhaseConfig(method=Ransac(threshold=0.3)),
        seed=3,
    )
    position = estimator.estimate()

    print(f"\nTrue position:   {scenario.true_position}")
    print(f"Coarse (RSSI):   {estimator.coarse_position}")
    print(f"Fine (ranging):  {position}")
    print(f"Error: {np.linalg.norm(position - scenario.true_position):.3f} m")
    if estimator.covariance is not None:
        print(f"Position std: {np.sqrt(np.diag(estimator.covariance))}")
    print(f"Progress events: {len(progress)} (last {progress[-1]:.2f})")

    return scenario, estimator


def main():
    """Run all robust positioning examples."""
    print("\n" + "=" * 70)
    print("Robust Radio Positioning Examples")
    print("=" * 70)

    scenario1, robust = example_direct_vs_robust()
    scenario2, sequential = example_sequential()

    print("\n" + "=" * 70)
    print("Generating visualization...")
    print("=" * 70)

    fig = plot_positioning_geometry(
        np.array([s.position for s in scenario1.sources]),
        robust.estimated_position,
        true_position=scenario1.true_position,
        sample_positions=robust.positions,
        sample_distances=robust.distances,
        inliers=robust.inliers_data.inliers,
        title="PROMedS with NLOS outliers",
    )
    save_figure(fig, "positioning_examples/figs", "robust_positioning", formats=("png",))

    fig = plot_positioning_geometry(
        np.array([s.position for s in scenario2.sources]),
        sequential.estimated_position,
        true_position=scenario2.true_position,
        coarse_position=sequential.coarse_position,
        title="Sequential RSSI -> ranging",
    )
    save_figure(fig, "positioning_examples/figs", "sequential_positioning", formats=("png",))
    print("\nFigures saved in positioning_examples/figs/")

    plt.show()

    print("\n" + "=" * 70)
    print("Examples completed successfully!")
    print("=" * 70)


if __name__ == "__main__":
    main()
