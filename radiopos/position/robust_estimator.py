"""
Robust position estimation from located radio sources and a fingerprint.

RobustPositionEstimator turns a list of located radio sources and the
fingerprint captured at an unknown location into lateration samples (see
``radiopos.position.helper``) and hands them to one of the random-sampling
lateration solvers, so that readings affected by multipath, NLOS or wrong
source positions are discarded as outliers.

Lifecycle:
    - Setting sources, fingerprint, quality scores or any setting that
      changes the samples marks them dirty; they are rebuilt lazily by
      ``build()`` the next time they are needed.
    - ``is_ready()`` tells whether ``estimate()`` can run.
    - While ``estimate()`` runs the estimator is locked: every setter and a
      nested ``estimate()`` raise LockedError. The lock is released on every
      exit path.

Example:
    >>> estimator = RobustPositionEstimator(
    ...     dimensions=2, method="ransac", sources=sources, fingerprint=fingerprint
    ... )
    >>> estimator.threshold = 0.5
    >>> position = estimator.estimate()
    >>> estimator.inliers_data.num_inliers
"""

import dataclasses
from typing import Iterable, Optional, Sequence

import numpy as np

from radiopos.errors import IllegalArgumentError, LockedError, NotReadyError
from radiopos.estimators.robust_lateration import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    InliersData,
    RobustLaterationResult,
)
from radiopos.events import Listener
from radiopos.position.helper import (
    DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION,
    LaterationSamples,
    build_lateration_samples,
)
from radiopos.position.methods import (
    Dimensions,
    RobustEstimatorMethod,
    RobustMethod,
    as_dimensions,
    as_robust_method,
)
from radiopos.position.reading_sorter import distribute_quality_scores
from radiopos.rf.types import Fingerprint, RadioSource, ReadingType

DEFAULT_USE_RADIO_SOURCE_POSITION_COVARIANCE = True
DEFAULT_EVENLY_DISTRIBUTE_READINGS = True


class RobustPositionEstimator:
    """
    Robustly estimate a 2D or 3D position from radio source readings.

    Args:
        dimensions: 2, 3 or a Dimensions descriptor.
        method: Robust method as a variant (e.g. ``Ransac(threshold=0.5)``),
            a RobustEstimatorMethod, a name ("ransac", "lmeds", "msac",
            "prosac", "promeds") or None for PROMedS.
        sources: Located radio sources (at least d + 1).
        fingerprint: Readings captured at the location to estimate.
        source_quality_scores: One score per source; larger is better.
        fingerprint_reading_quality_scores: One score per reading.
        listener: Callable receiving EstimateStarted, NextIteration,
            ProgressChanged and EstimateEnded events.
        reading_types: Reading kinds this estimator consumes; None for all.
        seed: Seed of the random generator used for sampling.
    """

    def __init__(
        self,
        dimensions=2,
        method=None,
        sources: Optional[Sequence[RadioSource]] = None,
        fingerprint: Optional[Fingerprint] = None,
        source_quality_scores: Optional[Sequence[float]] = None,
        fingerprint_reading_quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[Listener] = None,
        reading_types: Optional[Iterable[ReadingType]] = None,
        seed=None,
    ):
        self._dimensions = as_dimensions(dimensions)
        self._robust_method = as_robust_method(method)
        self._reading_types = (
            frozenset(reading_types) if reading_types is not None else frozenset(ReadingType)
        )
        self._rng = np.random.default_rng(seed)

        self._locked = False
        self._dirty = True
        self._sources = None
        self._fingerprint = None
        self._source_quality_scores = None
        self._fingerprint_reading_quality_scores = None
        self._listener = listener
        self._preliminary_subset_size = self._dimensions.min_required_sources
        self._initial_position = None

        self._confidence = DEFAULT_CONFIDENCE
        self._max_iterations = DEFAULT_MAX_ITERATIONS
        self._progress_delta = DEFAULT_PROGRESS_DELTA
        self._refine_result = True
        self._keep_covariance = True
        self._use_linear_solver = True
        self._use_homogeneous_linear_solver = False
        self._refine_preliminary_solutions = True
        self._use_radio_source_position_covariance = DEFAULT_USE_RADIO_SOURCE_POSITION_COVARIANCE
        self._evenly_distribute_readings = DEFAULT_EVENLY_DISTRIBUTE_READINGS
        self._fallback_distance_standard_deviation = DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION

        self._samples: Optional[LaterationSamples] = None
        self._result: Optional[RobustLaterationResult] = None

        if sources is not None:
            self.sources = sources
        if fingerprint is not None:
            self.fingerprint = fingerprint
        if source_quality_scores is not None:
            self.source_quality_scores = source_quality_scores
        if fingerprint_reading_quality_scores is not None:
            self.fingerprint_reading_quality_scores = fingerprint_reading_quality_scores

    def _check_not_locked(self) -> None:
        if self._locked:
            raise LockedError("Estimator is locked while estimating")

    def is_locked(self) -> bool:
        return self._locked

    # ------------------------------------------------------------------
    # Dimensions and method
    # ------------------------------------------------------------------
    @property
    def dimensions(self) -> Dimensions:
        return self._dimensions

    @property
    def number_of_dimensions(self) -> int:
        return self._dimensions.number_of_dimensions

    @property
    def min_required_sources(self) -> int:
        return self._dimensions.min_required_sources

    @property
    def reading_types(self) -> frozenset:
        """Reading kinds used to build samples."""
        return self._reading_types

    @property
    def method(self) -> RobustEstimatorMethod:
        return self._robust_method.method

    @property
    def robust_method(self) -> RobustMethod:
        return self._robust_method

    @robust_method.setter
    def robust_method(self, value) -> None:
        self._check_not_locked()
        self._robust_method = as_robust_method(value)

    @property
    def threshold(self) -> float:
        """Inlier threshold in meters (RANSAC, MSAC and PROSAC only)."""
        if not hasattr(self._robust_method, "threshold"):
            raise IllegalArgumentError(f"{self.method.name} has no threshold")
        return self._robust_method.threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._check_not_locked()
        if not hasattr(self._robust_method, "threshold"):
            raise IllegalArgumentError(f"{self.method.name} has no threshold")
        self._robust_method = dataclasses.replace(self._robust_method, threshold=value)

    @property
    def stop_threshold(self) -> float:
        """Median residual that ends iteration early (LMedS and PROMedS only)."""
        if not hasattr(self._robust_method, "stop_threshold"):
            raise IllegalArgumentError(f"{self.method.name} has no stop threshold")
        return self._robust_method.stop_threshold

    @stop_threshold.setter
    def stop_threshold(self, value: float) -> None:
        self._check_not_locked()
        if not hasattr(self._robust_method, "stop_threshold"):
            raise IllegalArgumentError(f"{self.method.name} has no stop threshold")
        self._robust_method = dataclasses.replace(self._robust_method, stop_threshold=value)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    @property
    def sources(self) -> Optional[list]:
        return self._sources

    @sources.setter
    def sources(self, sources: Sequence[RadioSource]) -> None:
        self._check_not_locked()
        if sources is None:
            raise IllegalArgumentError("sources cannot be None")
        sources = list(sources)
        if len(sources) < self.min_required_sources:
            raise IllegalArgumentError(
                f"At least {self.min_required_sources} sources are required, got {len(sources)}"
            )
        for source in sources:
            if not isinstance(source, RadioSource):
                raise IllegalArgumentError(f"Expected RadioSource, got {type(source)}")
            if source.dimensions != self.number_of_dimensions:
                raise IllegalArgumentError(
                    f"Source '{source.identifier}' is {source.dimensions}D, "
                    f"estimator is {self.number_of_dimensions}D"
                )
        self._sources = sources
        self._dirty = True

    @property
    def fingerprint(self) -> Optional[Fingerprint]:
        return self._fingerprint

    @fingerprint.setter
    def fingerprint(self, fingerprint: Fingerprint) -> None:
        self._check_not_locked()
        if fingerprint is None:
            raise IllegalArgumentError("fingerprint cannot be None")
        if not isinstance(fingerprint, Fingerprint):
            fingerprint = Fingerprint(tuple(fingerprint))
        self._fingerprint = fingerprint
        self._dirty = True

    def _validate_scores(self, scores, name):
        if scores is None:
            raise IllegalArgumentError(f"{name} cannot be None")
        scores = np.array(scores, dtype=float)
        if scores.ndim != 1 or len(scores) < self.min_required_sources:
            raise IllegalArgumentError(
                f"{name} must have at least {self.min_required_sources} elements"
            )
        return scores

    @property
    def source_quality_scores(self) -> Optional[np.ndarray]:
        return self._source_quality_scores

    @source_quality_scores.setter
    def source_quality_scores(self, scores) -> None:
        self._check_not_locked()
        self._source_quality_scores = self._validate_scores(scores, "source_quality_scores")
        self._dirty = True

    @property
    def fingerprint_reading_quality_scores(self) -> Optional[np.ndarray]:
        return self._fingerprint_reading_quality_scores

    @fingerprint_reading_quality_scores.setter
    def fingerprint_reading_quality_scores(self, scores) -> None:
        self._check_not_locked()
        self._fingerprint_reading_quality_scores = self._validate_scores(
            scores, "fingerprint_reading_quality_scores"
        )
        self._dirty = True

    @property
    def listener(self) -> Optional[Listener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[Listener]) -> None:
        self._check_not_locked()
        self._listener = listener

    @property
    def preliminary_subset_size(self) -> int:
        return self._preliminary_subset_size

    @preliminary_subset_size.setter
    def preliminary_subset_size(self, size: int) -> None:
        self._check_not_locked()
        if size < self.min_required_sources:
            raise IllegalArgumentError(
                f"preliminary_subset_size must be at least {self.min_required_sources}"
            )
        self._preliminary_subset_size = int(size)

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        return self._initial_position

    @initial_position.setter
    def initial_position(self, position: Optional[np.ndarray]) -> None:
        self._check_not_locked()
        if position is not None:
            position = np.asarray(position, dtype=float)
            if position.shape != (self.number_of_dimensions,):
                raise IllegalArgumentError(
                    f"initial_position must have shape ({self.number_of_dimensions},)"
                )
        self._initial_position = position
        # the covariance projection is measured from the initial position
        self._dirty = True

    # ------------------------------------------------------------------
    # Solver settings
    # ------------------------------------------------------------------
    @property
    def confidence(self) -> float:
        """Probability that at least one drawn subset is outlier free."""
        return self._confidence

    @confidence.setter
    def confidence(self, value: float) -> None:
        self._check_not_locked()
        if not 0.0 <= value <= 1.0:
            raise IllegalArgumentError(f"confidence must be between 0 and 1, got {value}")
        self._confidence = float(value)

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int) -> None:
        self._check_not_locked()
        if value < 1:
            raise IllegalArgumentError(f"max_iterations must be at least 1, got {value}")
        self._max_iterations = int(value)

    @property
    def progress_delta(self) -> float:
        """Minimum progress change between two ProgressChanged events."""
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_not_locked()
        if not 0.0 <= value <= 1.0:
            raise IllegalArgumentError(f"progress_delta must be between 0 and 1, got {value}")
        self._progress_delta = float(value)

    @property
    def refine_result(self) -> bool:
        return self._refine_result

    @refine_result.setter
    def refine_result(self, value: bool) -> None:
        self._check_not_locked()
        self._refine_result = bool(value)

    @property
    def keep_covariance(self) -> bool:
        return self._keep_covariance

    @keep_covariance.setter
    def keep_covariance(self, value: bool) -> None:
        self._check_not_locked()
        self._keep_covariance = bool(value)

    @property
    def use_linear_solver(self) -> bool:
        return self._use_linear_solver

    @use_linear_solver.setter
    def use_linear_solver(self, value: bool) -> None:
        self._check_not_locked()
        self._use_linear_solver = bool(value)

    @property
    def use_homogeneous_linear_solver(self) -> bool:
        return self._use_homogeneous_linear_solver

    @use_homogeneous_linear_solver.setter
    def use_homogeneous_linear_solver(self, value: bool) -> None:
        self._check_not_locked()
        self._use_homogeneous_linear_solver = bool(value)

    @property
    def refine_preliminary_solutions(self) -> bool:
        return self._refine_preliminary_solutions

    @refine_preliminary_solutions.setter
    def refine_preliminary_solutions(self, value: bool) -> None:
        self._check_not_locked()
        self._refine_preliminary_solutions = bool(value)

    # ------------------------------------------------------------------
    # Sample settings (changing them marks the samples dirty)
    # ------------------------------------------------------------------
    @property
    def use_radio_source_position_covariance(self) -> bool:
        return self._use_radio_source_position_covariance

    @use_radio_source_position_covariance.setter
    def use_radio_source_position_covariance(self, value: bool) -> None:
        self._check_not_locked()
        self._use_radio_source_position_covariance = bool(value)
        self._dirty = True

    @property
    def evenly_distribute_readings(self) -> bool:
        return self._evenly_distribute_readings

    @evenly_distribute_readings.setter
    def evenly_distribute_readings(self, value: bool) -> None:
        self._check_not_locked()
        self._evenly_distribute_readings = bool(value)
        self._dirty = True

    @property
    def fallback_distance_standard_deviation(self) -> float:
        """Standard deviation used when a reading provides none (meters)."""
        return self._fallback_distance_standard_deviation

    @fallback_distance_standard_deviation.setter
    def fallback_distance_standard_deviation(self, value: float) -> None:
        self._check_not_locked()
        if value <= 0:
            raise IllegalArgumentError(
                f"fallback_distance_standard_deviation must be positive, got {value}"
            )
        self._fallback_distance_standard_deviation = float(value)
        self._dirty = True

    # ------------------------------------------------------------------
    # Samples
    # ------------------------------------------------------------------
    def build(self) -> Optional[LaterationSamples]:
        """
        Rebuild the lateration samples from the current inputs.

        Returns:
            The samples, or None while sources or fingerprint are missing.

        Raises:
            LockedError: If called during estimation.
            IllegalArgumentError: If a quality score array does not match the
                number of sources or readings.
        """
        self._check_not_locked()
        if self._sources is None or self._fingerprint is None:
            self._samples = None
            return None

        source_scores = self._source_quality_scores
        reading_scores = self._fingerprint_reading_quality_scores
        if source_scores is not None and len(source_scores) != len(self._sources):
            raise IllegalArgumentError(
                f"Expected {len(self._sources)} source quality scores, got {len(source_scores)}"
            )
        if reading_scores is not None and len(reading_scores) != len(self._fingerprint):
            raise IllegalArgumentError(
                f"Expected {len(self._fingerprint)} reading quality scores, "
                f"got {len(reading_scores)}"
            )

        if self.evenly_distribute_readings:
            source_scores, reading_scores = distribute_quality_scores(
                self._sources, self._fingerprint, source_scores, reading_scores
            )

        self._samples = build_lateration_samples(
            self._sources,
            self._fingerprint,
            use_position_covariance=self.use_radio_source_position_covariance,
            fallback_distance_standard_deviation=self.fallback_distance_standard_deviation,
            initial_position=self._initial_position,
            reading_types=self._reading_types,
            source_quality_scores=source_scores,
            reading_quality_scores=reading_scores,
        )
        self._dirty = False
        return self._samples

    def _current_samples(self) -> Optional[LaterationSamples]:
        if self._dirty:
            return self.build()
        return self._samples

    def is_ready(self) -> bool:
        """True when enough sources and usable samples are available."""
        if self._sources is None or self._fingerprint is None:
            return False
        if len(self._sources) < self.min_required_sources:
            return False
        try:
            samples = self._current_samples()
        except IllegalArgumentError:
            return False
        return samples is not None and len(samples) >= self._preliminary_subset_size

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------
    def _forward(self, event) -> None:
        self._listener(dataclasses.replace(event, estimator=self))

    def estimate(self) -> np.ndarray:
        """
        Robustly estimate the position.

        Returns:
            Estimated position (d,).

        Raises:
            LockedError: If an estimation is already running.
            IllegalArgumentError: If quality scores do not match the inputs.
            NotReadyError: If there are not enough sources or usable samples.
            RobustEstimationError: If the robust solver fails.
        """
        self._check_not_locked()
        samples = self._current_samples()
        if not self.is_ready():
            raise NotReadyError(
                "Not enough sources or usable readings to estimate a position"
            )

        self._locked = True
        try:
            solver = self._robust_method.create_solver(
                samples.positions,
                samples.distances,
                samples.distance_standard_deviations,
                samples.quality_scores,
                confidence=self.confidence,
                max_iterations=self.max_iterations,
                progress_delta=self.progress_delta,
                preliminary_subset_size=self._preliminary_subset_size,
                refine_result=self.refine_result,
                keep_covariance=self.keep_covariance,
                initial_position=self._initial_position,
                use_linear_solver=self.use_linear_solver,
                use_homogeneous_linear_solver=self.use_homogeneous_linear_solver,
                refine_preliminary_solutions=self.refine_preliminary_solutions,
                listener=self._forward if self._listener is not None else None,
                seed=self._rng,
            )
            self._result = solver.solve()
        finally:
            self._locked = False

        return self._result.position

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return None if self._result is None else self._result.position

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return None if self._result is None else self._result.covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        return None if self._result is None else self._result.inliers_data

    @property
    def samples(self) -> Optional[LaterationSamples]:
        """Samples used by the last build."""
        return self._samples

    @property
    def positions(self) -> Optional[np.ndarray]:
        return None if self._samples is None else self._samples.positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        return None if self._samples is None else self._samples.distances

    @property
    def distance_standard_deviations(self) -> Optional[np.ndarray]:
        return None if self._samples is None else self._samples.distance_standard_deviations

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        return None if self._samples is None else self._samples.quality_scores
