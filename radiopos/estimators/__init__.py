"""
Lateration solvers.

Submodules:
    lateration: linear, homogeneous linear and non-linear direct solvers
    robust_lateration: RANSAC, MSAC, LMedS, PROSAC and PROMedS solvers
"""

from radiopos.estimators.lateration import (
    LaterationResult,
    homogeneous_linear_lateration,
    lateration_residuals,
    linear_lateration,
    nonlinear_lateration,
)
from radiopos.estimators.robust_lateration import (
    InliersData,
    LmedsLaterationSolver,
    MsacLaterationSolver,
    PromedsLaterationSolver,
    ProsacLaterationSolver,
    RansacLaterationSolver,
    RobustLaterationResult,
    RobustLaterationSolver,
)

__all__ = [
    "LaterationResult",
    "homogeneous_linear_lateration",
    "lateration_residuals",
    "linear_lateration",
    "nonlinear_lateration",
    "InliersData",
    "LmedsLaterationSolver",
    "MsacLaterationSolver",
    "PromedsLaterationSolver",
    "ProsacLaterationSolver",
    "RansacLaterationSolver",
    "RobustLaterationResult",
    "RobustLaterationSolver",
]
