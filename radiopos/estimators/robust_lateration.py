"""
Robust lateration: outlier-resistant position solving by random sampling.

Every solver repeatedly draws a minimal subset of samples (d + 1 by default),
computes a preliminary position from it, scores the position against all the
samples and keeps the best one. The best candidate is then optionally refined
by weighted non-linear least squares on its inliers.

Methods:
    RANSAC: maximizes the number of samples whose range residual is below a
        fixed threshold.
    MSAC: minimizes the truncated cost Σ min(r_i², t²).
    LMedS: minimizes the median residual. Iteration stops as soon as the
        median falls below a stop threshold; inliers are selected with a
        threshold derived from the robust standard deviation estimate
            σ = 1.4826 * (1 + 5 / (n - s)) * sqrt(median(r²))
    PROSAC / PROMedS: RANSAC / LMedS scoring, but subsets are first drawn from
        the samples with the best quality scores and progressively grow to the
        whole set. Only the ranking of the scores matters.

The number of iterations adapts to the inlier ratio w found so far:
    N = log(1 - confidence) / log(1 - w^s)
"""

import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from radiopos.errors import (
    IllegalArgumentError,
    PositionEstimationError,
    RobustEstimationError,
)
from radiopos.estimators.lateration import (
    homogeneous_linear_lateration,
    lateration_residuals,
    linear_lateration,
    nonlinear_lateration,
)
from radiopos.events import (
    EstimateEnded,
    EstimateStarted,
    Listener,
    NextIteration,
    ProgressChanged,
)

DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_PROGRESS_DELTA = 0.05
DEFAULT_THRESHOLD = 1e-2
DEFAULT_STOP_THRESHOLD = 1e-5

# Consistency factor of the median absolute deviation for Gaussian noise
_MAD_SCALE = 1.4826
_LMEDS_INLIER_FACTOR = 2.5


@dataclass
class InliersData:
    """Consensus found by a robust solver.

    Attributes:
        inliers: Boolean mask over the samples (N,).
        residuals: Range residuals of every sample for the best preliminary
            position (N,).
        num_inliers: Number of True entries in ``inliers``.
        threshold: Residual threshold used to classify inliers.
    """

    inliers: np.ndarray
    residuals: np.ndarray
    num_inliers: int
    threshold: float


@dataclass
class RobustLaterationResult:
    """Result of a robust lateration solve.

    Attributes:
        position: Estimated position (d,).
        covariance: Position covariance (d × d) when refinement ran with
            ``keep_covariance``, otherwise None.
        inliers_data: Consensus of the best preliminary solution.
        iterations: Number of subsets evaluated.
        refined: Whether the final non-linear refinement succeeded.
    """

    position: np.ndarray
    covariance: Optional[np.ndarray]
    inliers_data: InliersData
    iterations: int
    refined: bool


class RobustLaterationSolver(ABC):
    """
    Base class of the random-sampling lateration solvers.

    Subclasses define how a preliminary position is scored and which samples
    are considered inliers; sampling, adaptive iteration, progress reporting
    and refinement are shared.

    Args:
        positions: Sample positions (N, d) with d = 2 or 3.
        distances: Measured distances (N,).
        distance_standard_deviations: Distance standard deviations (N,), all
            positive. None means unit standard deviations.
        quality_scores: Per-sample quality scores (N,); larger is better. Used
            by the progressive methods, ignored by the others.
        confidence: Probability of drawing at least one outlier-free subset.
        max_iterations: Upper bound on the number of subsets evaluated.
        progress_delta: Minimum progress change between ProgressChanged events.
        preliminary_subset_size: Samples per subset (defaults to d + 1).
        refine_result: Refine the best solution on its inliers.
        keep_covariance: Keep the covariance computed during refinement.
        initial_position: Seed for non-linear solves when the linear solver
            is disabled.
        use_linear_solver: Solve subsets linearly before any refinement.
        use_homogeneous_linear_solver: Use the homogeneous linear formulation.
        refine_preliminary_solutions: Refine each subset solution non-linearly.
        listener: Callable receiving EstimateStarted, NextIteration,
            ProgressChanged and EstimateEnded events.
        seed: Seed of the random generator (int or np.random.Generator).
    """

    def __init__(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_standard_deviations: Optional[np.ndarray] = None,
        quality_scores: Optional[np.ndarray] = None,
        confidence: float = DEFAULT_CONFIDENCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        preliminary_subset_size: Optional[int] = None,
        refine_result: bool = True,
        keep_covariance: bool = True,
        initial_position: Optional[np.ndarray] = None,
        use_linear_solver: bool = True,
        use_homogeneous_linear_solver: bool = False,
        refine_preliminary_solutions: bool = True,
        listener: Optional[Listener] = None,
        seed=None,
    ):
        positions = np.asarray(positions, dtype=float)
        distances = np.asarray(distances, dtype=float)
        if positions.ndim != 2 or positions.shape[1] not in (2, 3):
            raise IllegalArgumentError(
                f"positions must have shape (N, 2) or (N, 3), got {positions.shape}"
            )
        n, dim = positions.shape
        if distances.shape != (n,):
            raise IllegalArgumentError(f"distances must have shape ({n},)")

        if distance_standard_deviations is None:
            distance_standard_deviations = np.ones(n)
        distance_standard_deviations = np.asarray(distance_standard_deviations, dtype=float)
        if distance_standard_deviations.shape != (n,):
            raise IllegalArgumentError(f"distance_standard_deviations must have shape ({n},)")
        if np.any(distance_standard_deviations <= 0):
            raise IllegalArgumentError("distance_standard_deviations must be positive")

        if quality_scores is not None:
            quality_scores = np.asarray(quality_scores, dtype=float)
            if quality_scores.shape != (n,):
                raise IllegalArgumentError(f"quality_scores must have shape ({n},)")

        if not 0.0 <= confidence <= 1.0:
            raise IllegalArgumentError("confidence must be between 0 and 1")
        if max_iterations < 1:
            raise IllegalArgumentError("max_iterations must be at least 1")
        if not 0.0 <= progress_delta <= 1.0:
            raise IllegalArgumentError("progress_delta must be between 0 and 1")

        if preliminary_subset_size is None:
            preliminary_subset_size = dim + 1
        if preliminary_subset_size < dim + 1:
            raise IllegalArgumentError(
                f"preliminary_subset_size must be at least {dim + 1} in {dim}D"
            )

        if initial_position is not None:
            initial_position = np.asarray(initial_position, dtype=float)
            if initial_position.shape != (dim,):
                raise IllegalArgumentError(f"initial_position must have shape ({dim},)")

        self.positions = positions
        self.distances = distances
        self.distance_standard_deviations = distance_standard_deviations
        self.quality_scores = quality_scores
        self.confidence = confidence
        self.max_iterations = int(max_iterations)
        self.progress_delta = progress_delta
        self.preliminary_subset_size = int(preliminary_subset_size)
        self.refine_result = refine_result
        self.keep_covariance = keep_covariance
        self.initial_position = initial_position
        self.use_linear_solver = use_linear_solver
        self.use_homogeneous_linear_solver = use_homogeneous_linear_solver
        self.refine_preliminary_solutions = refine_preliminary_solutions
        self.listener = listener
        self._rng = np.random.default_rng(seed)

    @property
    def dimensions(self) -> int:
        return self.positions.shape[1]

    @property
    def num_samples(self) -> int:
        return self.positions.shape[0]

    @abstractmethod
    def _evaluate(self, residuals: np.ndarray) -> Tuple[tuple, np.ndarray, float]:
        """Score residuals of a candidate.

        Returns:
            (cost, inliers mask, threshold); a lower cost is better.
        """

    def _should_stop(self, cost: tuple) -> bool:
        return False

    def _notify(self, event) -> None:
        if self.listener is not None:
            self.listener(event)

    def _required_iterations(self, num_inliers: int) -> int:
        """Iterations needed to draw an outlier-free subset with the configured confidence."""
        w = num_inliers / self.num_samples
        s = self.preliminary_subset_size
        outlier_free = w**s
        if outlier_free >= 1.0:
            return 1
        if outlier_free <= 0.0 or self.confidence >= 1.0:
            return self.max_iterations
        if self.confidence <= 0.0:
            return 1
        needed = np.log(1.0 - self.confidence) / np.log(1.0 - outlier_free)
        return int(min(max(np.ceil(needed), 1), self.max_iterations))

    def _draw_subset(self, iteration: int) -> np.ndarray:
        return self._rng.choice(self.num_samples, self.preliminary_subset_size, replace=False)

    def _preliminary_solution(self, indices: np.ndarray) -> np.ndarray:
        positions = self.positions[indices]
        distances = self.distances[indices]
        stds = self.distance_standard_deviations[indices]

        if not self.use_linear_solver:
            x0 = self.initial_position
            if x0 is None:
                x0 = positions.mean(axis=0)
            return nonlinear_lateration(
                positions, distances, stds, initial_position=x0, return_covariance=False
            ).position

        if self.use_homogeneous_linear_solver:
            x = homogeneous_linear_lateration(positions, distances)
        else:
            x = linear_lateration(positions, distances)

        if self.refine_preliminary_solutions:
            try:
                x = nonlinear_lateration(
                    positions, distances, stds, initial_position=x, return_covariance=False
                ).position
            except PositionEstimationError:
                pass
        return x

    def solve(self) -> RobustLaterationResult:
        """
        Run the robust search.

        Returns:
            RobustLaterationResult with the best position and its consensus.

        Raises:
            RobustEstimationError: If there are fewer samples than the subset
                size, every subset was degenerate, or no sample agreed with
                the best candidate.
        """
        if self.num_samples < self.preliminary_subset_size:
            raise RobustEstimationError(
                f"Need at least {self.preliminary_subset_size} samples, "
                f"got {self.num_samples}"
            )

        self._notify(EstimateStarted(self))

        best_position = None
        best_cost = None
        best_residuals = None
        iterations_needed = self.max_iterations
        last_progress = 0.0
        iteration = 0

        while iteration < min(iterations_needed, self.max_iterations):
            indices = self._draw_subset(iteration)
            iteration += 1

            try:
                candidate = self._preliminary_solution(indices)
            except PositionEstimationError:
                candidate = None

            if candidate is not None:
                residuals = lateration_residuals(candidate, self.positions, self.distances)
                cost, inliers, _ = self._evaluate(residuals)
                if best_cost is None or cost < best_cost:
                    best_position = candidate
                    best_cost = cost
                    best_residuals = residuals
                    iterations_needed = self._required_iterations(int(np.sum(inliers)))

            self._notify(NextIteration(self, iteration))

            progress = min(1.0, iteration / min(iterations_needed, self.max_iterations))
            if progress - last_progress >= self.progress_delta and progress < 1.0:
                last_progress = progress
                self._notify(ProgressChanged(self, progress))

            if best_cost is not None and self._should_stop(best_cost):
                break

        if last_progress < 1.0:
            self._notify(ProgressChanged(self, 1.0))

        if best_position is None:
            raise RobustEstimationError("Every sampled subset had degenerate geometry")

        _, inliers, threshold = self._evaluate(best_residuals)
        inliers_data = InliersData(
            inliers=inliers,
            residuals=best_residuals,
            num_inliers=int(np.sum(inliers)),
            threshold=float(threshold),
        )
        if inliers_data.num_inliers == 0:
            raise RobustEstimationError("No sample agrees with the best solution")

        position, covariance, refined = self._refine(best_position, inliers)

        self._notify(EstimateEnded(self))

        return RobustLaterationResult(
            position=position,
            covariance=covariance,
            inliers_data=inliers_data,
            iterations=iteration,
            refined=refined,
        )

    def _refine(self, position: np.ndarray, inliers: np.ndarray):
        if not self.refine_result or np.sum(inliers) < self.dimensions + 1:
            return position, None, False

        try:
            result = nonlinear_lateration(
                self.positions[inliers],
                self.distances[inliers],
                self.distance_standard_deviations[inliers],
                initial_position=position,
                return_covariance=self.keep_covariance,
            )
        except PositionEstimationError as exc:
            warnings.warn(
                f"Refinement failed ({exc}); keeping unrefined solution",
                RuntimeWarning,
            )
            return position, None, False

        covariance = result.covariance if self.keep_covariance else None
        return result.position, covariance, True


class RansacLaterationSolver(RobustLaterationSolver):
    """RANSAC: maximize the number of samples within ``threshold``."""

    def __init__(self, *args, threshold: float = DEFAULT_THRESHOLD, **kwargs):
        if threshold <= 0:
            raise IllegalArgumentError("threshold must be positive")
        super().__init__(*args, **kwargs)
        self.threshold = threshold

    def _evaluate(self, residuals):
        inliers = residuals <= self.threshold
        # Ties on the inlier count go to the tighter fit
        cost = (-int(np.sum(inliers)), float(np.sum(residuals[inliers] ** 2)))
        return cost, inliers, self.threshold


class MsacLaterationSolver(RobustLaterationSolver):
    """MSAC: minimize Σ min(r², threshold²)."""

    def __init__(self, *args, threshold: float = DEFAULT_THRESHOLD, **kwargs):
        if threshold <= 0:
            raise IllegalArgumentError("threshold must be positive")
        super().__init__(*args, **kwargs)
        self.threshold = threshold

    def _evaluate(self, residuals):
        inliers = residuals <= self.threshold
        cost = float(np.sum(np.minimum(residuals**2, self.threshold**2)))
        return (cost,), inliers, self.threshold


class LmedsLaterationSolver(RobustLaterationSolver):
    """LMedS: minimize the median residual until it reaches ``stop_threshold``."""

    def __init__(self, *args, stop_threshold: float = DEFAULT_STOP_THRESHOLD, **kwargs):
        if stop_threshold <= 0:
            raise IllegalArgumentError("stop_threshold must be positive")
        super().__init__(*args, **kwargs)
        self.stop_threshold = stop_threshold

    def _evaluate(self, residuals):
        median = float(np.median(residuals**2))
        dof = max(self.num_samples - self.preliminary_subset_size, 1)
        sigma = _MAD_SCALE * (1.0 + 5.0 / dof) * np.sqrt(median)
        threshold = max(_LMEDS_INLIER_FACTOR * sigma, self.stop_threshold)
        inliers = residuals <= threshold
        return (np.sqrt(median),), inliers, threshold

    def _should_stop(self, cost):
        return cost[0] <= self.stop_threshold


class ProgressiveSamplingMixin:
    """
    PROSAC sampling schedule.

    Samples are ranked by descending quality score. At iteration t the
    sampling pool holds the n best samples, where n grows from s to N
    following T'_n; while t <= T'_n the subset is the n-th best sample plus
    s - 1 samples drawn from the n - 1 better ones.
    """

    def _init_progressive(self):
        n_total = self.num_samples
        s = self.preliminary_subset_size
        scores = self.quality_scores
        if scores is None:
            scores = np.zeros(n_total)
        self._order = np.argsort(-scores, kind="stable")

        t_n = float(self.max_iterations)
        for i in range(s):
            t_n *= (s - i) / (n_total - i)
        self._t_n = t_n
        self._t_n_prime = 1
        self._pool_size = s

    def _draw_subset(self, iteration):
        if iteration == 0:
            self._init_progressive()

        t = iteration + 1
        s = self.preliminary_subset_size
        if t > self._t_n_prime and self._pool_size < self.num_samples:
            n = self._pool_size
            t_next = self._t_n * (n + 1) / (n + 1 - s)
            self._t_n_prime += int(np.ceil(t_next - self._t_n))
            self._t_n = t_next
            self._pool_size = n + 1

        n = self._pool_size
        if t > self._t_n_prime:
            return self._rng.choice(self._order[:n], s, replace=False)
        head = self._rng.choice(self._order[: n - 1], s - 1, replace=False)
        return np.append(head, self._order[n - 1])


class ProsacLaterationSolver(ProgressiveSamplingMixin, RansacLaterationSolver):
    """PROSAC: RANSAC scoring with quality-ordered progressive sampling."""


class PromedsLaterationSolver(ProgressiveSamplingMixin, LmedsLaterationSolver):
    """PROMedS: LMedS scoring with quality-ordered progressive sampling."""
