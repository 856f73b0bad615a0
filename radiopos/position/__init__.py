"""
Position estimation from located radio sources and a fingerprint.

Submodules:
    methods: robust method variants and dimensionality descriptors
    helper: conversion of sources + fingerprint into lateration samples
    reading_sorter: even distribution of quality scores across sources
    robust_estimator: RobustPositionEstimator
    sequential: two-phase RSSI then ranging estimator
    direct: non-robust lateration estimator
"""

from radiopos.position.direct import LaterationPositionEstimator
from radiopos.position.helper import LaterationSamples, build_lateration_samples
from radiopos.position.methods import (
    THREE_D,
    TWO_D,
    Dimensions,
    Lmeds,
    Msac,
    Promeds,
    Prosac,
    Ransac,
    RobustEstimatorMethod,
    as_robust_method,
)
from radiopos.position.reading_sorter import ReadingSorter, distribute_quality_scores
from radiopos.position.robust_estimator import RobustPositionEstimator
from radiopos.position.sequential import (
    PhaseConfig,
    SequentialRobustPositionEstimator,
    split_fingerprint,
)

__all__ = [
    "LaterationPositionEstimator",
    "LaterationSamples",
    "build_lateration_samples",
    "THREE_D",
    "TWO_D",
    "Dimensions",
    "Lmeds",
    "Msac",
    "Promeds",
    "Prosac",
    "Ransac",
    "RobustEstimatorMethod",
    "as_robust_method",
    "ReadingSorter",
    "distribute_quality_scores",
    "RobustPositionEstimator",
    "PhaseConfig",
    "SequentialRobustPositionEstimator",
    "split_fingerprint",
]
