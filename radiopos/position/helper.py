"""
Build flat lateration samples from located sources and a fingerprint.

Each usable reading becomes one sample (source position, distance, distance
standard deviation, quality score). A RANGING_AND_RSSI reading yields two
samples, the ranging one first. RSSI values are turned into distances with
the source transmitted power; RSSI readings of sources without a known
transmitted power are skipped.

The distance variance of a sample is the reading variance plus, when enabled,
the source position covariance projected onto the line of sight from a
reference point (the initial position when known, else the centroid of the
sources in play). If neither is available, or the result is not a positive
finite number, the fallback standard deviation is used.
"""

import warnings
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from radiopos.rf.measurement_models import (
    projected_position_variance,
    rssi_distance_standard_deviation,
    rssi_to_distance,
)
from radiopos.rf.types import Fingerprint, RadioSource, ReadingType

DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION = 1e-3  # m


@dataclass
class LaterationSamples:
    """Parallel per-sample arrays handed to the lateration solvers.

    Attributes:
        positions: Source positions (N, d).
        distances: Distances to the sources (N,).
        distance_standard_deviations: Positive standard deviations (N,).
        quality_scores: Source score + reading score of each sample (N,).
        source_indices: Index of the originating source in the source list (N,).
        reading_indices: Index of the originating reading in the fingerprint (N,).
    """

    positions: np.ndarray
    distances: np.ndarray
    distance_standard_deviations: np.ndarray
    quality_scores: np.ndarray
    source_indices: np.ndarray
    reading_indices: np.ndarray

    def __len__(self) -> int:
        return len(self.distances)


def _is_positive_semidefinite(cov: np.ndarray) -> bool:
    eigvals = np.linalg.eigvalsh(cov)
    return bool(eigvals.min() >= -1e-12 * max(abs(eigvals.max()), 1.0))


def build_lateration_samples(
    sources: Sequence[RadioSource],
    fingerprint: Fingerprint,
    use_position_covariance: bool = True,
    fallback_distance_standard_deviation: float = DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION,
    initial_position: Optional[np.ndarray] = None,
    reading_types: Optional[Iterable[ReadingType]] = None,
    source_quality_scores: Optional[np.ndarray] = None,
    reading_quality_scores: Optional[np.ndarray] = None,
) -> LaterationSamples:
    """
    Turn sources + fingerprint into lateration samples.

    Sources are visited in order and, for each one, its readings in
    fingerprint order.

    Args:
        sources: Located radio sources. All must share the same dimensions.
        fingerprint: Readings captured at the unknown location.
        use_position_covariance: Add the projected source position variance.
        fallback_distance_standard_deviation: Standard deviation (m) used when
            no usable uncertainty is available. Must be positive.
        initial_position: Reference point for the covariance projection.
        reading_types: Reading kinds to use; None uses all of them.
        source_quality_scores: Score per source (len(sources),), or None.
        reading_quality_scores: Score per reading (len(fingerprint),), or None.

    Returns:
        LaterationSamples, possibly empty.
    """
    if fallback_distance_standard_deviation <= 0:
        raise ValueError("fallback_distance_standard_deviation must be positive")

    kinds = frozenset(reading_types) if reading_types is not None else frozenset(ReadingType)
    dim = sources[0].dimensions if len(sources) > 0 else 2

    positions = []
    distances = []
    reading_stds = []
    scores = []
    source_indices = []
    reading_indices = []

    for s_idx, source in enumerate(sources):
        source_score = 0.0 if source_quality_scores is None else source_quality_scores[s_idx]

        for r_idx, reading in enumerate(fingerprint):
            if reading.source_id != source.identifier or reading.reading_type not in kinds:
                continue
            reading_score = 0.0 if reading_quality_scores is None else reading_quality_scores[r_idx]

            measured = []
            if reading.reading_type.has_ranging:
                measured.append((reading.distance, reading.distance_standard_deviation))
            if reading.reading_type.has_rssi:
                if source.has_power:
                    measured.append((
                        rssi_to_distance(
                            reading.rssi,
                            source.transmitted_power_dbm,
                            source.frequency,
                            source.path_loss_exponent,
                        ),
                        rssi_distance_standard_deviation(
                            reading.rssi,
                            source.transmitted_power_dbm,
                            source.frequency,
                            source.path_loss_exponent,
                            transmitted_power_std=source.transmitted_power_standard_deviation,
                            rssi_std=reading.rssi_standard_deviation,
                            path_loss_exp_std=source.path_loss_exponent_standard_deviation,
                        ),
                    ))
                else:
                    warnings.warn(
                        f"Source '{source.identifier}' has no transmitted power; "
                        "ignoring its RSSI reading",
                        RuntimeWarning,
                    )

            for distance, std in measured:
                positions.append(source.position)
                distances.append(distance)
                reading_stds.append(std)
                scores.append(source_score + reading_score)
                source_indices.append(s_idx)
                reading_indices.append(r_idx)

    positions = np.asarray(positions, dtype=float).reshape(-1, dim)
    source_indices = np.asarray(source_indices, dtype=int)

    reference_point = None
    if use_position_covariance and len(positions) > 0:
        if initial_position is not None:
            reference_point = np.asarray(initial_position, dtype=float)
        else:
            used = np.unique(source_indices)
            reference_point = np.mean([sources[i].position for i in used], axis=0)

    stds = np.empty(len(positions))
    for k, (s_idx, std) in enumerate(zip(source_indices, reading_stds)):
        variance = 0.0 if std is None else std**2

        cov = sources[s_idx].position_covariance
        if reference_point is not None and cov is not None:
            if _is_positive_semidefinite(cov):
                variance += projected_position_variance(positions[k], cov, reference_point)
            else:
                warnings.warn(
                    f"Position covariance of source '{sources[s_idx].identifier}' "
                    "is not positive semi-definite; ignoring it",
                    RuntimeWarning,
                )

        if np.isfinite(variance) and variance > 0:
            stds[k] = np.sqrt(variance)
        else:
            stds[k] = fallback_distance_standard_deviation

    return LaterationSamples(
        positions=positions,
        distances=np.asarray(distances, dtype=float),
        distance_standard_deviations=stds,
        quality_scores=np.asarray(scores, dtype=float),
        source_indices=source_indices,
        reading_indices=np.asarray(reading_indices, dtype=int),
    )
