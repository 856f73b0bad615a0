"""
Sequential coarse-to-fine robust position estimation.

RSSI readings are plentiful but their distances are coarse, while ranging
readings are accurate but their non-linear solve needs a sensible starting
point. SequentialRobustPositionEstimator therefore runs two robust
estimations in a row:

    1. RSSI phase: a robust estimation using only the RSSI part of the
       readings. Its failure is not fatal.
    2. Ranging phase: a robust estimation using only the ranging part of the
       readings, seeded with the RSSI position when the first phase
       succeeded, or with the configured initial position otherwise.

RANGING_AND_RSSI readings are split into one reading for each phase.
Progress of the first phase is reported in [0, 0.5] and progress of the
second one in [0.5, 1].
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from radiopos.errors import (
    IllegalArgumentError,
    LockedError,
    NotReadyError,
    RobustEstimationError,
)
from radiopos.estimators.robust_lateration import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    InliersData,
)
from radiopos.events import (
    EstimateEnded,
    EstimateStarted,
    Listener,
    ProgressChanged,
)
from radiopos.position.helper import DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION
from radiopos.position.methods import (
    RobustMethod,
    as_dimensions,
    as_robust_method,
)
from radiopos.position.robust_estimator import (
    DEFAULT_EVENLY_DISTRIBUTE_READINGS,
    DEFAULT_USE_RADIO_SOURCE_POSITION_COVARIANCE,
    RobustPositionEstimator,
)
from radiopos.rf.types import Fingerprint, RadioSource, ReadingType


@dataclass(frozen=True)
class PhaseConfig:
    """
    Configuration of one phase of the sequential estimator.

    Attributes:
        method: Robust method variant, enum member or name. None means PROMedS.
        confidence: Confidence of the robust search, in [0, 1].
        max_iterations: Maximum number of subsets evaluated.
        preliminary_subset_size: Samples per subset; None or values below
            d + 1 use d + 1.
        fallback_distance_standard_deviation: Standard deviation used when a
            sample has no usable uncertainty.
        use_linear_solver: Solve subsets linearly first.
        use_homogeneous_linear_solver: Use the homogeneous linear solver.
        refine_preliminary_solutions: Refine each subset solution.
        use_radio_source_position_covariance: Add projected source position
            variance to the distance variance.
        evenly_distribute_readings: Interleave quality scores across sources.
    """

    method: Optional[RobustMethod] = None
    confidence: float = DEFAULT_CONFIDENCE
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    preliminary_subset_size: Optional[int] = None
    fallback_distance_standard_deviation: float = DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION
    use_linear_solver: bool = True
    use_homogeneous_linear_solver: bool = False
    refine_preliminary_solutions: bool = True
    use_radio_source_position_covariance: bool = DEFAULT_USE_RADIO_SOURCE_POSITION_COVARIANCE
    evenly_distribute_readings: bool = DEFAULT_EVENLY_DISTRIBUTE_READINGS

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", as_robust_method(self.method))
        if not 0.0 <= self.confidence <= 1.0:
            raise IllegalArgumentError("confidence must be between 0 and 1")
        if self.max_iterations < 1:
            raise IllegalArgumentError("max_iterations must be at least 1")
        if self.fallback_distance_standard_deviation <= 0:
            raise IllegalArgumentError("fallback_distance_standard_deviation must be positive")


def split_fingerprint(
    fingerprint: Fingerprint,
    reading_quality_scores: Optional[np.ndarray] = None,
) -> Tuple[Fingerprint, Optional[np.ndarray], Fingerprint, Optional[np.ndarray]]:
    """
    Split readings into a ranging-only and an RSSI-only fingerprint.

    Composite readings contribute to both; each split reading keeps the
    quality score of the reading it came from.

    Returns:
        (ranging fingerprint, ranging scores, rssi fingerprint, rssi scores);
        the score arrays are None when no scores were given.
    """
    ranging, ranging_scores = [], []
    rssi, rssi_scores = [], []

    for i, reading in enumerate(fingerprint):
        score = None if reading_quality_scores is None else reading_quality_scores[i]
        if reading.reading_type is ReadingType.RANGING:
            ranging.append(reading)
            ranging_scores.append(score)
        elif reading.reading_type is ReadingType.RSSI:
            rssi.append(reading)
            rssi_scores.append(score)
        else:
            ranging.append(reading.to_ranging())
            ranging_scores.append(score)
            rssi.append(reading.to_rssi())
            rssi_scores.append(score)

    if reading_quality_scores is None:
        return Fingerprint(tuple(ranging)), None, Fingerprint(tuple(rssi)), None
    return (
        Fingerprint(tuple(ranging)),
        np.asarray(ranging_scores, dtype=float),
        Fingerprint(tuple(rssi)),
        np.asarray(rssi_scores, dtype=float),
    )


class SequentialRobustPositionEstimator:
    """
    Two-phase robust estimator: coarse RSSI position, then ranging refinement.

    Args:
        dimensions: 2, 3 or a Dimensions descriptor.
        sources: Located radio sources.
        fingerprint: Readings captured at the location to estimate.
        source_quality_scores: One score per source.
        fingerprint_reading_quality_scores: One score per reading.
        listener: Callable receiving EstimateStarted, ProgressChanged and
            EstimateEnded events of the whole pipeline.
        ranging_config: PhaseConfig of the ranging phase.
        rssi_config: PhaseConfig of the RSSI phase.
        seed: Seed of the random generator shared by both phases.

    Example:
        >>> estimator = SequentialRobustPositionEstimator(
        ...     dimensions=3, sources=sources, fingerprint=fingerprint,
        ...     rssi_config=PhaseConfig(method="ransac"),
        ... )
        >>> position = estimator.estimate()
        >>> estimator.coarse_position  # None if the RSSI phase failed
    """

    def __init__(
        self,
        dimensions=2,
        sources: Optional[Sequence[RadioSource]] = None,
        fingerprint: Optional[Fingerprint] = None,
        source_quality_scores: Optional[Sequence[float]] = None,
        fingerprint_reading_quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[Listener] = None,
        ranging_config: Optional[PhaseConfig] = None,
        rssi_config: Optional[PhaseConfig] = None,
        seed=None,
    ):
        self._dimensions = as_dimensions(dimensions)
        self._rng = np.random.default_rng(seed)
        self._locked = False

        self._sources = None
        self._fingerprint = None
        self._source_quality_scores = None
        self._fingerprint_reading_quality_scores = None
        self._listener = listener
        self._ranging_config = ranging_config or PhaseConfig()
        self._rssi_config = rssi_config or PhaseConfig()
        self._progress_delta = DEFAULT_PROGRESS_DELTA
        self._refine_result = True
        self._keep_covariance = True
        self._initial_position = None

        self._ranging_estimator: Optional[RobustPositionEstimator] = None
        self._coarse_position = None

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

    @property
    def number_of_dimensions(self) -> int:
        return self._dimensions.number_of_dimensions

    @property
    def min_required_sources(self) -> int:
        return self._dimensions.min_required_sources

    @property
    def sources(self):
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
        self._sources = sources

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

    @property
    def fingerprint_reading_quality_scores(self) -> Optional[np.ndarray]:
        return self._fingerprint_reading_quality_scores

    @fingerprint_reading_quality_scores.setter
    def fingerprint_reading_quality_scores(self, scores) -> None:
        self._check_not_locked()
        self._fingerprint_reading_quality_scores = self._validate_scores(
            scores, "fingerprint_reading_quality_scores"
        )

    @property
    def listener(self) -> Optional[Listener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[Listener]) -> None:
        self._check_not_locked()
        self._listener = listener

    @property
    def ranging_config(self) -> PhaseConfig:
        return self._ranging_config

    @ranging_config.setter
    def ranging_config(self, config: PhaseConfig) -> None:
        self._check_not_locked()
        if not isinstance(config, PhaseConfig):
            raise IllegalArgumentError("ranging_config must be a PhaseConfig")
        self._ranging_config = config

    @property
    def rssi_config(self) -> PhaseConfig:
        return self._rssi_config

    @rssi_config.setter
    def rssi_config(self, config: PhaseConfig) -> None:
        self._check_not_locked()
        if not isinstance(config, PhaseConfig):
            raise IllegalArgumentError("rssi_config must be a PhaseConfig")
        self._rssi_config = config

    @property
    def progress_delta(self) -> float:
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_not_locked()
        if not 0.0 <= value <= 1.0:
            raise IllegalArgumentError("progress_delta must be between 0 and 1")
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
    def initial_position(self) -> Optional[np.ndarray]:
        return self._initial_position

    @initial_position.setter
    def initial_position(self, position) -> None:
        self._check_not_locked()
        if position is not None:
            position = np.asarray(position, dtype=float)
            if position.shape != (self.number_of_dimensions,):
                raise IllegalArgumentError(
                    f"initial_position must have shape ({self.number_of_dimensions},)"
                )
        self._initial_position = position

    def is_ready(self) -> bool:
        """More sources than the minimum, and at least one reading per source."""
        if self._sources is None or self._fingerprint is None:
            return False
        return (
            len(self._sources) > self.min_required_sources
            and len(self._fingerprint) >= len(self._sources)
        )

    def _build_phase(
        self,
        config: PhaseConfig,
        reading_type: ReadingType,
        fingerprint: Fingerprint,
        reading_scores: Optional[np.ndarray],
        phase_start: float,
    ) -> RobustPositionEstimator:
        estimator = RobustPositionEstimator(
            dimensions=self._dimensions,
            method=config.method,
            sources=self._sources,
            fingerprint=fingerprint,
            reading_types=(reading_type,),
            seed=self._rng,
        )
        if self._source_quality_scores is not None:
            estimator.source_quality_scores = self._source_quality_scores
        if reading_scores is not None and len(reading_scores) >= self.min_required_sources:
            estimator.fingerprint_reading_quality_scores = reading_scores

        estimator.confidence = config.confidence
        estimator.max_iterations = config.max_iterations
        estimator.preliminary_subset_size = max(
            config.preliminary_subset_size or 0, estimator.min_required_sources
        )
        estimator.fallback_distance_standard_deviation = config.fallback_distance_standard_deviation
        estimator.use_linear_solver = config.use_linear_solver
        estimator.use_homogeneous_linear_solver = config.use_homogeneous_linear_solver
        estimator.refine_preliminary_solutions = config.refine_preliminary_solutions
        estimator.use_radio_source_position_covariance = config.use_radio_source_position_covariance
        estimator.evenly_distribute_readings = config.evenly_distribute_readings
        estimator.refine_result = self._refine_result
        estimator.keep_covariance = self._keep_covariance
        estimator.progress_delta = min(1.0, 2.0 * self._progress_delta)

        if self._listener is not None:
            def forward_progress(event):
                if isinstance(event, ProgressChanged):
                    self._listener(
                        ProgressChanged(self, phase_start + 0.5 * event.progress)
                    )

            estimator.listener = forward_progress
        return estimator

    def _notify(self, event) -> None:
        if self._listener is not None:
            self._listener(event)

    def estimate(self) -> np.ndarray:
        """
        Estimate the position with the RSSI phase followed by the ranging phase.

        Returns:
            Estimated position (d,).

        Raises:
            LockedError: If an estimation is already running.
            NotReadyError: If there are not enough sources or readings, or the
                ranging phase has too few usable samples.
            RobustEstimationError: If the ranging phase fails.
        """
        self._check_not_locked()
        if not self.is_ready():
            raise NotReadyError("Not enough sources or readings to estimate a position")

        self._locked = True
        try:
            self._notify(EstimateStarted(self))
            ranging_fp, ranging_scores, rssi_fp, rssi_scores = split_fingerprint(
                self._fingerprint, self._fingerprint_reading_quality_scores
            )

            self._coarse_position = None
            rssi_estimator = self._build_phase(
                self._rssi_config, ReadingType.RSSI, rssi_fp, rssi_scores, 0.0
            )
            rssi_estimator.initial_position = self._initial_position
            if rssi_estimator.is_ready():
                try:
                    self._coarse_position = rssi_estimator.estimate()
                except RobustEstimationError:
                    self._coarse_position = None

            ranging_estimator = self._build_phase(
                self._ranging_config, ReadingType.RANGING, ranging_fp, ranging_scores, 0.5
            )
            if self._coarse_position is not None:
                ranging_estimator.initial_position = self._coarse_position
            else:
                ranging_estimator.initial_position = self._initial_position

            self._ranging_estimator = ranging_estimator
            position = ranging_estimator.estimate()
            self._notify(EstimateEnded(self))
        finally:
            self._locked = False

        return position

    @property
    def coarse_position(self) -> Optional[np.ndarray]:
        """Position found by the RSSI phase of the last estimation, if any."""
        return self._coarse_position

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        if self._ranging_estimator is None:
            return None
        return self._ranging_estimator.estimated_position

    @property
    def covariance(self) -> Optional[np.ndarray]:
        if self._ranging_estimator is None:
            return None
        return self._ranging_estimator.covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        if self._ranging_estimator is None:
            return None
        return self._ranging_estimator.inliers_data

    # Samples of the ranging phase of the last estimation.
    @property
    def positions(self) -> Optional[np.ndarray]:
        if self._ranging_estimator is None:
            return None
        return self._ranging_estimator.positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        if self._ranging_estimator is None:
            return None
        return self._ranging_estimator.distances

    @property
    def distance_standard_deviations(self) -> Optional[np.ndarray]:
        if self._ranging_estimator is None:
            return None
        return self._ranging_estimator.distance_standard_deviations

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        if self._ranging_estimator is None:
            return None
        return self._ranging_estimator.quality_scores
