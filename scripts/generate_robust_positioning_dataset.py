"""
Generate a robust radio positioning benchmark dataset.

Draws one set of located radio sources and many device positions, simulates
the fingerprint captured at every position (ranging, RSSI or both), corrupts a
fraction of the readings with NLOS-like outliers, and runs every robust method
plus the sequential and the direct estimators on each fingerprint.

The estimator outputs below are benchmark results of this script only; the
radiopos estimators themselves never write results to disk.

Outputs (in the output directory):
    sources.npz      source identifiers and positions
    fingerprints.npz true positions, per-reading distances / RSSI, outlier masks
    estimates.npz    benchmark estimates per method (NaN where a method failed)
    covariances.npz  reported covariances per method (NaN when none was given)
    error_cdf.png    error CDF of every method
    config.json      generation parameters and per-method error statistics,
                     per-axis RMSE and mean NEES of the reported covariances
"""

import argparse
import json
import sys
import time
import warnings
from pathlib import Path
from typing import Dict, List, Tuple

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from radiopos.errors import PositioningError  # noqa: E402
from radiopos.eval import (  # noqa: E402
    compute_error_stats,
    compute_nees,
    compute_outlier_detection_stats,
    compute_position_errors,
    compute_rmse,
    plot_error_cdf,
    save_figure,
)
from radiopos.position import (  # noqa: E402
    LaterationPositionEstimator,
    RobustPositionEstimator,
    SequentialRobustPositionEstimator,
)
from radiopos.rf import ReadingType  # noqa: E402
from radiopos.sim import generate_sources, inject_outliers, simulate_fingerprint  # noqa: E402

ROBUST_METHODS = ("ransac", "msac", "prosac", "lmeds", "promeds")

PRESETS: Dict[str, Dict] = {
    "baseline": {
        "reading_type": "ranging",
        "num_sources": 10,
        "ranging_noise": 0.1,
        "rssi_noise": 0.0,
        "outlier_fraction": 0.0,
        "output": "data/sim/robust_positioning_baseline",
    },
    "outliers": {
        "reading_type": "ranging",
        "num_sources": 12,
        "ranging_noise": 0.1,
        "rssi_noise": 0.0,
        "outlier_fraction": 0.3,
        "output": "data/sim/robust_positioning_outliers",
    },
    "mixed": {
        "reading_type": "ranging_and_rssi",
        "num_sources": 12,
        "ranging_noise": 0.1,
        "rssi_noise": 2.0,
        "outlier_fraction": 0.2,
        "output": "data/sim/robust_positioning_mixed",
    },
}


def _run(estimator, dimensions) -> Tuple[np.ndarray, np.ndarray]:
    """Estimate once; a failed run or a missing covariance gives NaN."""
    try:
        position = estimator.estimate()
    except PositioningError:
        return np.full(dimensions, np.nan), np.full((dimensions, dimensions), np.nan)
    covariance = estimator.covariance
    if covariance is None:
        covariance = np.full((dimensions, dimensions), np.nan)
    return position, covariance


def run_estimators(sources, fingerprint, dimensions, threshold, seed) -> Tuple[Dict, Dict, Dict]:
    """Run every estimator on one fingerprint."""
    estimates = {}
    covariances = {}
    inliers = {}

    for method in ROBUST_METHODS:
        estimator = RobustPositionEstimator(
            dimensions=dimensions, method=method, sources=sources,
            fingerprint=fingerprint, seed=seed,
        )
        if method in ("ransac", "msac", "prosac"):
            estimator.threshold = threshold
        estimates[method], covariances[method] = _run(estimator, dimensions)
        if estimator.inliers_data is not None:
            inliers[method] = estimator.inliers_data.inliers

    sequential = SequentialRobustPositionEstimator(
        dimensions=dimensions, sources=sources, fingerprint=fingerprint, seed=seed
    )
    estimates["sequential"], covariances["sequential"] = _run(sequential, dimensions)

    direct = LaterationPositionEstimator(
        dimensions=dimensions, sources=sources,
        fingerprint=fingerprint,
    )
    estimates["direct"], covariances["direct"] = _run(direct, dimensions)

    return estimates, covariances, inliers


def save_dataset(
    output_dir: Path,
    sources,
    true_positions: np.ndarray,
    fingerprints: List,
    outlier_masks: np.ndarray,
    estimates: Dict[str, np.ndarray],
    covariances: Dict[str, np.ndarray],
    config: Dict,
) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)

    np.savez(
        output_dir / "sources.npz",
        identifiers=np.array([s.identifier for s in sources]),
        positions=np.array([s.position for s in sources]),
    )

    def column(attr):
        return np.array(
            [[np.nan if getattr(r, attr) is None else getattr(r, attr) for r in fp]
             for fp in fingerprints]
        )

    np.savez(
        output_dir / "fingerprints.npz",
        true_positions=true_positions,
        distances=column("distance"),
        rssi=column("rssi"),
        outliers=outlier_masks,
    )
    np.savez(output_dir / "estimates.npz", **estimates)
    np.savez(output_dir / "covariances.npz", **covariances)

    errors = {
        name: compute_position_errors(true_positions, estimated)
        for name, estimated in estimates.items()
    }
    fig = plot_error_cdf(errors, title=f"Error CDF ({output_dir.name})")
    save_figure(fig, output_dir, "error_cdf", formats=("png",))
    plt.close(fig)

    with open(output_dir / "config.json", "w") as f:
        json.dump(config, f, indent=2)

    print(f"\n  Saved dataset to: {output_dir}")


def generate_dataset(
    output_dir: str,
    preset: str = None,
    reading_type: str = "ranging",
    dimensions: int = 2,
    num_sources: int = 10,
    num_points: int = 50,
    area_size: float = 20.0,
    ranging_noise: float = 0.1,
    rssi_noise: float = 0.0,
    outlier_fraction: float = 0.2,
    threshold: float = 0.5,
    seed: int = 42,
) -> Dict:
    if preset is not None:
        params = PRESETS[preset]
        reading_type = params["reading_type"]
        num_sources = params["num_sources"]
        ranging_noise = params["ranging_noise"]
        rssi_noise = params["rssi_noise"]
        outlier_fraction = params["outlier_fraction"]
        output_dir = params["output"]

    kind = ReadingType(reading_type)
    rng = np.random.default_rng(seed)

    print("\n" + "=" * 70)
    print(f"Generating Robust Positioning Dataset: {Path(output_dir).name}")
    print("=" * 70)

    print("\nStep 1: Placing radio sources...")
    sources = generate_sources(num_sources, dimensions=dimensions, area_size=area_size, rng=rng)
    print(f"  Sources: {len(sources)} ({dimensions}D, {area_size}m area)")

    print("\nStep 2: Simulating fingerprints...")
    true_positions = rng.uniform(0.25 * area_size, 0.75 * area_size, size=(num_points, dimensions))
    fingerprints = []
    outlier_masks = []
    for position in true_positions:
        fingerprint = simulate_fingerprint(
            sources, position, reading_type=kind,
            ranging_std=ranging_noise, rssi_std=rssi_noise, rng=rng,
        )
        fingerprint, outliers = inject_outliers(fingerprint, outlier_fraction, rng=rng)
        fingerprints.append(fingerprint)
        outlier_masks.append(outliers)
    outlier_masks = np.array(outlier_masks)
    print(f"  Points: {num_points}, reading type: {kind.value}")
    print(f"  Ranging noise: {ranging_noise:.3f} m, RSSI noise: {rssi_noise:.1f} dB")
    print(f"  Outlier fraction: {outlier_fraction:.2f}")

    print("\nStep 3: Running estimators...")
    start = time.time()
    names = list(ROBUST_METHODS) + ["sequential", "direct"]
    estimates = {name: np.zeros((num_points, dimensions)) for name in names}
    covariances = {name: np.zeros((num_points, dimensions, dimensions)) for name in names}
    detection = {name: [] for name in ROBUST_METHODS}
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        for i, fingerprint in enumerate(fingerprints):
            point_estimates, point_covariances, inliers = run_estimators(
                sources, fingerprint, dimensions, threshold, seed + i
            )
            for name in names:
                estimates[name][i] = point_estimates[name]
                covariances[name][i] = point_covariances[name]
            # one sample per reading only for single-kind fingerprints
            if kind is not ReadingType.RANGING_AND_RSSI:
                for name, mask in inliers.items():
                    if len(mask) == len(outlier_masks[i]):
                        detection[name].append(
                            compute_outlier_detection_stats(mask, outlier_masks[i])
                        )
    elapsed = time.time() - start
    print(f"  Estimation time: {elapsed:.3f} s")

    print("\nPositioning Errors:")
    performance = {}
    for name in names:
        errors = compute_position_errors(true_positions, estimates[name])
        stats = compute_error_stats(errors)
        if "mean" not in stats:
            print(f"  {name:<11} all estimations failed")
            performance[name] = stats
            continue
        stats["rmse_per_axis"] = compute_rmse(errors, axis=0).tolist()

        nees = compute_nees(true_positions, estimates[name], covariances[name])
        # NaN when a method reports no covariance
        stats["mean_nees"] = float(np.nanmean(nees)) if np.any(~np.isnan(nees)) else None

        if detection.get(name):
            stats["outlier_recall"] = float(np.mean([d["recall"] for d in detection[name]]))
        performance[name] = stats

        nees_text = "n/a" if stats["mean_nees"] is None else f"{stats['mean_nees']:.2f}"
        print(
            f"  {name:<11} mean={stats['mean']:.3f}m, p90={stats['p90']:.3f}m, "
            f"max={stats['max']:.3f}m, NEES={nees_text}, failures={stats['failures']}"
        )

    config = {
        "dataset": "robust_positioning",
        "preset": preset,
        "dimensions": dimensions,
        "num_sources": num_sources,
        "num_points": num_points,
        "area_size_m": area_size,
        "reading_type": kind.value,
        "ranging_noise_std_m": ranging_noise,
        "rssi_noise_std_db": rssi_noise,
        "outlier_fraction": outlier_fraction,
        "threshold_m": threshold,
        "performance": performance,
        "seed": seed,
    }

    save_dataset(Path(output_dir), sources, true_positions, fingerprints,
                 outlier_masks, estimates, covariances, config)

    print("\n" + "=" * 70)
    print("Dataset generation complete!")
    print("=" * 70)
    return config


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Generate Robust Radio Positioning Dataset",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Presets:
  baseline   Ranging readings, small noise, no outliers
  outliers   Ranging readings with 30% NLOS outliers
  mixed      Ranging + RSSI readings with 20% outliers

Examples:
  python scripts/generate_robust_positioning_dataset.py --preset outliers

  python scripts/generate_robust_positioning_dataset.py \\
      --output data/sim/my_robust \\
      --reading-type rssi --rssi-noise 3.0 --dimensions 3
        """,
    )

    parser.add_argument(
        "--preset",
        type=str,
        choices=sorted(PRESETS),
        help="Use preset configuration (overrides other parameters)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="data/sim/robust_positioning",
        help="Output directory (default: data/sim/robust_positioning)",
    )

    scene_group = parser.add_argument_group("Scenario Parameters")
    scene_group.add_argument("--dimensions", type=int, choices=[2, 3], default=2)
    scene_group.add_argument("--num-sources", type=int, default=10)
    scene_group.add_argument("--num-points", type=int, default=50)
    scene_group.add_argument(
        "--area-size", type=float, default=20.0, help="Area size in meters (default: 20.0)"
    )

    meas_group = parser.add_argument_group("Measurement Parameters")
    meas_group.add_argument(
        "--reading-type",
        type=str,
        choices=[t.value for t in ReadingType],
        default="ranging",
    )
    meas_group.add_argument(
        "--ranging-noise", type=float, default=0.1, help="Ranging noise std in meters"
    )
    meas_group.add_argument("--rssi-noise", type=float, default=0.0, help="RSSI noise std in dB")
    meas_group.add_argument(
        "--outlier-fraction", type=float, default=0.2, help="Fraction of corrupted readings"
    )

    parser.add_argument(
        "--threshold", type=float, default=0.5,
        help="Inlier threshold for RANSAC/MSAC/PROSAC in meters (default: 0.5)",
    )
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")

    args = parser.parse_args()

    generate_dataset(
        output_dir=args.output,
        preset=args.preset,
        reading_type=args.reading_type,
        dimensions=args.dimensions,
        num_sources=args.num_sources,
        num_points=args.num_points,
        area_size=args.area_size,
        ranging_noise=args.ranging_noise,
        rssi_noise=args.rssi_noise,
        outlier_fraction=args.outlier_fraction,
        threshold=args.threshold,
        seed=args.seed,
    )


if __name__ == "__main__":
    main()
