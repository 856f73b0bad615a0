"""Non-robust position estimation: one direct lateration solve on every sample."""

from typing import Iterable, Optional, Sequence

import numpy as np

from radiopos.errors import IllegalArgumentError, LockedError, NotReadyError
from radiopos.estimators.lateration import (
    LaterationResult,
    homogeneous_linear_lateration,
    linear_lateration,
    nonlinear_lateration,
)
from radiopos.events import EstimateEnded, EstimateStarted, Listener
from radiopos.position.helper import (
    DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION,
    LaterationSamples,
    build_lateration_samples,
)
from radiopos.position.methods import as_dimensions
from radiopos.rf.types import Fingerprint, RadioSource, ReadingType

SOLVERS = ("linear", "homogeneous", "nonlinear")


class LaterationPositionEstimator:
    """
    Estimate a position from all readings at once, without outlier rejection.

    Suitable when readings are known to be clean, or as a baseline for the
    robust estimators.

    Args:
        dimensions: 2, 3 or a Dimensions descriptor.
        sources: Located radio sources.
        fingerprint: Readings captured at the location to estimate.
        solver: "linear", "homogeneous" or "nonlinear". The non-linear solver
            starts from ``initial_position`` or from the linear solution and
            provides a covariance.
        initial_position: Starting point of the non-linear solver and
            reference point of the source covariance projection.
        use_radio_source_position_covariance: Add projected source position
            variance to the distance variance.
        fallback_distance_standard_deviation: Standard deviation used when a
            sample has no usable uncertainty.
        reading_types: Reading kinds to use; None for all.
        listener: Callable receiving EstimateStarted and EstimateEnded events.

    Raises:
        IllegalArgumentError: If the solver name or an input is invalid.
    """

    def __init__(
        self,
        dimensions=2,
        sources: Optional[Sequence[RadioSource]] = None,
        fingerprint: Optional[Fingerprint] = None,
        solver: str = "nonlinear",
        initial_position: Optional[np.ndarray] = None,
        use_radio_source_position_covariance: bool = True,
        fallback_distance_standard_deviation: float = DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION,
        reading_types: Optional[Iterable[ReadingType]] = None,
        listener: Optional[Listener] = None,
    ):
        if solver not in SOLVERS:
            raise IllegalArgumentError(f"Unknown solver '{solver}'. Use one of {SOLVERS}")
        self._dimensions = as_dimensions(dimensions)
        self.sources = list(sources) if sources is not None else None
        self.fingerprint = fingerprint
        self.solver = solver
        self.initial_position = initial_position
        self.use_radio_source_position_covariance = use_radio_source_position_covariance
        self.fallback_distance_standard_deviation = fallback_distance_standard_deviation
        self.reading_types = reading_types
        self.listener = listener

        self._locked = False
        self.samples: Optional[LaterationSamples] = None
        self.result: Optional[LaterationResult] = None

    def __setattr__(self, name, value):
        if getattr(self, "_locked", False):
            raise LockedError("Estimator is locked while estimating")
        super().__setattr__(name, value)

    @property
    def min_required_sources(self) -> int:
        return self._dimensions.min_required_sources

    def is_locked(self) -> bool:
        return self._locked

    def _build(self) -> Optional[LaterationSamples]:
        if self.sources is None or self.fingerprint is None:
            return None
        return build_lateration_samples(
            self.sources,
            self.fingerprint,
            use_position_covariance=self.use_radio_source_position_covariance,
            fallback_distance_standard_deviation=self.fallback_distance_standard_deviation,
            initial_position=self.initial_position,
            reading_types=self.reading_types,
        )

    def is_ready(self) -> bool:
        samples = self._build()
        return samples is not None and len(samples) >= self.min_required_sources

    def estimate(self) -> np.ndarray:
        """
        Solve lateration on every sample.

        Returns:
            Estimated position (d,).

        Raises:
            LockedError: If an estimation is already running.
            NotReadyError: If there are fewer than d + 1 usable samples.
            PositionEstimationError: If the geometry is degenerate or the
                non-linear solve diverges.
        """
        if self._locked:
            raise LockedError("Estimator is locked while estimating")
        samples = self._build()
        if samples is None or len(samples) < self.min_required_sources:
            raise NotReadyError("Not enough usable readings to estimate a position")
        self.samples = samples

        if self.listener is not None:
            self.listener(EstimateStarted(self))

        object.__setattr__(self, "_locked", True)
        try:
            if self.solver == "linear":
                position = linear_lateration(samples.positions, samples.distances)
                result = None
            elif self.solver == "homogeneous":
                position = homogeneous_linear_lateration(samples.positions, samples.distances)
                result = None
            else:
                result = nonlinear_lateration(
                    samples.positions,
                    samples.distances,
                    samples.distance_standard_deviations,
                    initial_position=self.initial_position,
                )
                position = result.position
        finally:
            object.__setattr__(self, "_locked", False)

        self.result = result
        if self.listener is not None:
            self.listener(EstimateEnded(self))
        return position

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return None if self.result is None else self.result.covariance
