"""Robust method variants and dimensionality descriptors.

Each variant carries the single tuning knob of its method: a fixed inlier
threshold (RANSAC, MSAC, PROSAC) or a stop threshold on the median residual
(LMedS, PROMedS). Everything else about the estimation is shared.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from radiopos.errors import IllegalArgumentError
from radiopos.estimators.robust_lateration import (
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    LmedsLaterationSolver,
    MsacLaterationSolver,
    PromedsLaterationSolver,
    ProsacLaterationSolver,
    RansacLaterationSolver,
)


@dataclass(frozen=True)
class Dimensions:
    """Spatial dimensionality of the estimation (2D or 3D)."""

    number_of_dimensions: int

    def __post_init__(self) -> None:
        if self.number_of_dimensions not in (2, 3):
            raise IllegalArgumentError(
                f"number_of_dimensions must be 2 or 3, got {self.number_of_dimensions}"
            )

    @property
    def min_required_sources(self) -> int:
        """Sources needed to fix a position: one more than the dimensions."""
        return self.number_of_dimensions + 1


TWO_D = Dimensions(2)
THREE_D = Dimensions(3)


def as_dimensions(value: Union[int, Dimensions]) -> Dimensions:
    if isinstance(value, Dimensions):
        return value
    return Dimensions(int(value))


class RobustEstimatorMethod(Enum):
    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"


def _check_positive(name: str, value: float) -> None:
    if value <= 0:
        raise IllegalArgumentError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class Ransac:
    threshold: float = DEFAULT_THRESHOLD

    method = RobustEstimatorMethod.RANSAC

    def __post_init__(self) -> None:
        _check_positive("threshold", self.threshold)

    def create_solver(self, *args, **kwargs) -> RansacLaterationSolver:
        return RansacLaterationSolver(*args, threshold=self.threshold, **kwargs)


@dataclass(frozen=True)
class Msac:
    threshold: float = DEFAULT_THRESHOLD

    method = RobustEstimatorMethod.MSAC

    def __post_init__(self) -> None:
        _check_positive("threshold", self.threshold)

    def create_solver(self, *args, **kwargs) -> MsacLaterationSolver:
        return MsacLaterationSolver(*args, threshold=self.threshold, **kwargs)


@dataclass(frozen=True)
class Prosac:
    threshold: float = DEFAULT_THRESHOLD

    method = RobustEstimatorMethod.PROSAC

    def __post_init__(self) -> None:
        _check_positive("threshold", self.threshold)

    def create_solver(self, *args, **kwargs) -> ProsacLaterationSolver:
        return ProsacLaterationSolver(*args, threshold=self.threshold, **kwargs)


@dataclass(frozen=True)
class Lmeds:
    stop_threshold: float = DEFAULT_STOP_THRESHOLD

    method = RobustEstimatorMethod.LMEDS

    def __post_init__(self) -> None:
        _check_positive("stop_threshold", self.stop_threshold)

    def create_solver(self, *args, **kwargs) -> LmedsLaterationSolver:
        return LmedsLaterationSolver(*args, stop_threshold=self.stop_threshold, **kwargs)


@dataclass(frozen=True)
class Promeds:
    stop_threshold: float = DEFAULT_STOP_THRESHOLD

    method = RobustEstimatorMethod.PROMEDS

    def __post_init__(self) -> None:
        _check_positive("stop_threshold", self.stop_threshold)

    def create_solver(self, *args, **kwargs) -> PromedsLaterationSolver:
        return PromedsLaterationSolver(*args, stop_threshold=self.stop_threshold, **kwargs)


RobustMethod = Union[Ransac, Msac, Prosac, Lmeds, Promeds]

_VARIANTS = {
    RobustEstimatorMethod.RANSAC: Ransac,
    RobustEstimatorMethod.MSAC: Msac,
    RobustEstimatorMethod.PROSAC: Prosac,
    RobustEstimatorMethod.LMEDS: Lmeds,
    RobustEstimatorMethod.PROMEDS: Promeds,
}

DEFAULT_ROBUST_METHOD = RobustEstimatorMethod.PROMEDS


def as_robust_method(value=None) -> RobustMethod:
    """
    Normalize a method given as a variant, an enum member, a name or None.

    Examples:
        >>> as_robust_method("ransac")
        Ransac(threshold=0.01)
        >>> as_robust_method(None)
        Promeds(stop_threshold=1e-05)
    """
    if value is None:
        value = DEFAULT_ROBUST_METHOD
    if isinstance(value, tuple(_VARIANTS.values())):
        return value
    if isinstance(value, str):
        try:
            value = RobustEstimatorMethod(value.lower())
        except ValueError:
            raise IllegalArgumentError(
                f"Unknown robust method '{value}'. "
                f"Use one of {[m.value for m in RobustEstimatorMethod]}"
            ) from None
    if isinstance(value, RobustEstimatorMethod):
        return _VARIANTS[value]()
    raise IllegalArgumentError(f"Unsupported robust method {value!r}")
