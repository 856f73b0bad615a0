"""Progress events reported by estimators to their listener.

A listener is any callable taking a single event. Events are delivered
synchronously on the caller's thread while ``estimate()`` / ``solve()`` runs.
"""

from dataclasses import dataclass
from typing import Any, Callable, Union


@dataclass(frozen=True)
class EstimateStarted:
    estimator: Any


@dataclass(frozen=True)
class EstimateEnded:
    estimator: Any


@dataclass(frozen=True)
class NextIteration:
    estimator: Any
    iteration: int


@dataclass(frozen=True)
class ProgressChanged:
    """Fraction of the iteration budget consumed, in [0, 1]."""

    estimator: Any
    progress: float


EstimatorEvent = Union[EstimateStarted, EstimateEnded, NextIteration, ProgressChanged]
Listener = Callable[[EstimatorEvent], None]
