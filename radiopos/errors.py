"""
Exceptions raised by the radiopos estimators.

All errors derive from PositioningError so callers can catch the whole family
with a single clause. Validation errors double as ValueError, and lifecycle
errors (locked / not ready) double as RuntimeError, so code written against
the built-in exception types keeps working.
"""


class PositioningError(Exception):
    """Base class for all radiopos errors."""


class LockedError(PositioningError, RuntimeError):
    """An estimator was modified or re-entered while an estimation is running."""


class NotReadyError(PositioningError, RuntimeError):
    """estimate() was called before enough sources and readings were provided."""


class IllegalArgumentError(PositioningError, ValueError):
    """A configuration value or input collection is invalid."""


class RobustEstimationError(PositioningError):
    """The robust solver found no consensus or exhausted its iterations."""


class PositionEstimationError(PositioningError):
    """A direct (non-robust) lateration solve failed."""
