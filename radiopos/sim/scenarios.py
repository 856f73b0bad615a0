"""
Synthetic positioning scenarios.

Generates located radio sources, the fingerprint a device would capture at a
known position, and gross outliers (NLOS-like positive range biases and RSSI
attenuation). Every function takes a numpy Generator or seed so scenarios
are reproducible.
"""

import dataclasses
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from radiopos.rf.measurement_models import received_power
from radiopos.rf.types import (
    Fingerprint,
    RadioSource,
    ReadingType,
    ranging_and_rssi_reading,
    ranging_reading,
    rssi_reading,
)

DEFAULT_TRANSMITTED_POWER_DBM = 20.0


@dataclass
class Scenario:
    """Synthetic scenario with ground truth.

    Attributes:
        sources: Located radio sources.
        fingerprint: Readings captured at ``true_position``.
        true_position: Ground-truth device position.
        outliers: Boolean mask over the fingerprint readings marking the
            corrupted ones.
    """

    sources: List[RadioSource]
    fingerprint: Fingerprint
    true_position: np.ndarray
    outliers: np.ndarray


def generate_sources(
    num_sources: int,
    dimensions: int = 2,
    area_size: float = 20.0,
    transmitted_power_dbm: Optional[float] = DEFAULT_TRANSMITTED_POWER_DBM,
    transmitted_power_std: Optional[float] = None,
    path_loss_exponent: float = 2.0,
    position_std: Optional[float] = None,
    rng=None,
) -> List[RadioSource]:
    """
    Place radio sources uniformly in a square (or cube) area.

    Args:
        num_sources: Number of sources.
        dimensions: 2 or 3.
        area_size: Side of the area in meters.
        transmitted_power_dbm: Transmitted power of every source, or None.
        transmitted_power_std: Transmitted power uncertainty in dB, or None.
        path_loss_exponent: Path-loss exponent of every source.
        position_std: If given, every source carries an isotropic position
            covariance position_std² * I.
        rng: numpy Generator or seed.

    Returns:
        List of RadioSource named "source-0", "source-1", ...
    """
    if dimensions not in (2, 3):
        raise ValueError("dimensions must be 2 or 3")
    rng = np.random.default_rng(rng)

    positions = rng.uniform(0.0, area_size, size=(num_sources, dimensions))
    covariance = None
    if position_std is not None:
        covariance = position_std**2 * np.eye(dimensions)

    return [
        RadioSource(
            identifier=f"source-{i}",
            position=positions[i],
            position_covariance=covariance,
            transmitted_power_dbm=transmitted_power_dbm,
            transmitted_power_standard_deviation=transmitted_power_std,
            path_loss_exponent=path_loss_exponent,
        )
        for i in range(num_sources)
    ]


def simulate_fingerprint(
    sources: Sequence[RadioSource],
    true_position: np.ndarray,
    reading_type: ReadingType = ReadingType.RANGING,
    ranging_std: float = 0.0,
    rssi_std: float = 0.0,
    report_std: bool = True,
    rng=None,
) -> Fingerprint:
    """
    Simulate one reading per source at ``true_position``.

    Args:
        sources: Located radio sources (RSSI needs a transmitted power).
        true_position: Device position.
        reading_type: Kind of reading generated for every source.
        ranging_std: Gaussian ranging noise in meters.
        rssi_std: Gaussian RSSI noise in dB.
        report_std: Store the noise levels as reading standard deviations
            (only when they are positive).
        rng: numpy Generator or seed.

    Returns:
        Fingerprint with readings in source order.
    """
    rng = np.random.default_rng(rng)
    true_position = np.asarray(true_position, dtype=float)

    distance_std = ranging_std if report_std and ranging_std > 0 else None
    power_std = rssi_std if report_std and rssi_std > 0 else None

    readings = []
    for source in sources:
        true_distance = float(np.linalg.norm(source.position - true_position))
        distance = true_distance
        if ranging_std > 0:
            distance = max(true_distance + rng.normal(0.0, ranging_std), 0.0)

        rssi = None
        if reading_type.has_rssi:
            # Friis model is undefined at zero distance
            rssi = received_power(
                source.transmitted_power_dbm,
                max(true_distance, 1e-3),
                source.frequency,
                source.path_loss_exponent,
            )
            if rssi_std > 0:
                rssi += rng.normal(0.0, rssi_std)

        if reading_type is ReadingType.RANGING:
            readings.append(ranging_reading(source.identifier, distance, distance_std))
        elif reading_type is ReadingType.RSSI:
            readings.append(rssi_reading(source.identifier, rssi, power_std))
        else:
            readings.append(
                ranging_and_rssi_reading(
                    source.identifier, distance, rssi, distance_std, power_std
                )
            )

    return Fingerprint(tuple(readings))


def inject_outliers(
    fingerprint: Fingerprint,
    fraction: float = 0.2,
    range_bias: Tuple[float, float] = (5.0, 15.0),
    rssi_attenuation: Tuple[float, float] = (10.0, 20.0),
    rng=None,
) -> Tuple[Fingerprint, np.ndarray]:
    """
    Corrupt a fraction of the readings with gross errors.

    Ranging values get a positive bias (NLOS paths are longer) and RSSI
    values an attenuation, both drawn uniformly from the given intervals.

    Args:
        fingerprint: Clean fingerprint.
        fraction: Fraction of readings to corrupt, rounded down.
        range_bias: (min, max) range bias in meters.
        rssi_attenuation: (min, max) RSSI attenuation in dB.
        rng: numpy Generator or seed.

    Returns:
        (corrupted fingerprint, boolean outlier mask over the readings)
    """
    if not 0.0 <= fraction <= 1.0:
        raise ValueError("fraction must be between 0 and 1")
    rng = np.random.default_rng(rng)

    n = len(fingerprint)
    outliers = np.zeros(n, dtype=bool)
    outliers[rng.choice(n, int(fraction * n), replace=False)] = True

    readings = list(fingerprint.readings)
    for i in np.flatnonzero(outliers):
        reading = readings[i]
        changes = {}
        if reading.reading_type.has_ranging:
            changes["distance"] = reading.distance + rng.uniform(*range_bias)
        if reading.reading_type.has_rssi:
            changes["rssi"] = reading.rssi - rng.uniform(*rssi_attenuation)
        readings[i] = dataclasses.replace(reading, **changes)

    return Fingerprint(tuple(readings)), outliers


def make_scenario(
    num_sources: int = 10,
    dimensions: int = 2,
    area_size: float = 20.0,
    reading_type: ReadingType = ReadingType.RANGING,
    ranging_std: float = 0.0,
    rssi_std: float = 0.0,
    outlier_fraction: float = 0.0,
    position_std: Optional[float] = None,
    seed=None,
) -> Scenario:
    """
    Build a complete scenario: sources, true position and fingerprint.

    The true position is drawn in the central half of the area so that it is
    surrounded by sources.
    """
    rng = np.random.default_rng(seed)

    sources = generate_sources(
        num_sources,
        dimensions=dimensions,
        area_size=area_size,
        position_std=position_std,
        rng=rng,
    )
    true_position = rng.uniform(0.25 * area_size, 0.75 * area_size, size=dimensions)
    fingerprint = simulate_fingerprint(
        sources,
        true_position,
        reading_type=reading_type,
        ranging_std=ranging_std,
        rssi_std=rssi_std,
        rng=rng,
    )

    outliers = np.zeros(len(fingerprint), dtype=bool)
    if outlier_fraction > 0:
        fingerprint, outliers = inject_outliers(fingerprint, outlier_fraction, rng=rng)

    return Scenario(
        sources=sources,
        fingerprint=fingerprint,
        true_position=true_position,
        outliers=outliers,
    )
