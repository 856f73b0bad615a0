"""Data holders for located radio sources, readings and fingerprints.

A fingerprint is the set of readings captured by a device at a single,
unknown location. Each reading refers to the radio source that emitted it
through the source identifier, so a fingerprint can be paired with any list
of located sources (readings of unknown sources are simply ignored by the
estimators).

Three kinds of readings are supported:
    - RANGING: a measured distance to the source (e.g. Wi-Fi RTT, UWB).
    - RSSI: a received power in dBm, converted to distance through the
      log-distance path-loss model when the source transmitted power is known.
    - RANGING_AND_RSSI: both values captured together.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Optional, Tuple

import numpy as np

from radiopos.rf.measurement_models import DEFAULT_FREQUENCY, DEFAULT_PATH_LOSS_EXPONENT


class RadioSourceType(Enum):
    """Kind of radio source emitting the readings."""

    WIFI_ACCESS_POINT = "wifi_access_point"
    BEACON = "beacon"


class ReadingType(Enum):
    """Kind of measurement contained in a reading."""

    RANGING = "ranging"
    RSSI = "rssi"
    RANGING_AND_RSSI = "ranging_and_rssi"

    @property
    def has_ranging(self) -> bool:
        return self in (ReadingType.RANGING, ReadingType.RANGING_AND_RSSI)

    @property
    def has_rssi(self) -> bool:
        return self in (ReadingType.RSSI, ReadingType.RANGING_AND_RSSI)


def _check_std(name: str, value: Optional[float]) -> None:
    if value is not None and value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


@dataclass(frozen=True, eq=False)
class RadioSource:
    """
    Radio source placed at a known position.

    Attributes:
        identifier: Unique source identifier (e.g. BSSID or beacon UUID).
        position: Source position, shape (2,) or (3,), in meters.
        position_covariance: Optional covariance of the position (d × d).
            When present, it is projected onto the line of sight and added to
            the distance variance of every reading of this source.
        frequency: Carrier frequency in Hz. Defines the free-space reference
            distance used to turn RSSI into distance.
        transmitted_power_dbm: Transmitted power in dBm. Required to use RSSI
            readings of this source.
        transmitted_power_standard_deviation: Uncertainty of the transmitted
            power in dB.
        path_loss_exponent: Path-loss exponent η (2.0 in free space).
        path_loss_exponent_standard_deviation: Uncertainty of η.
        source_type: Access point or beacon.

    Example:
        >>> ap = RadioSource(
        ...     identifier="ap-1",
        ...     position=np.array([0.0, 0.0]),
        ...     transmitted_power_dbm=-20.0,
        ... )
        >>> ap.dimensions
        2
    """

    identifier: str
    position: np.ndarray
    position_covariance: Optional[np.ndarray] = None
    frequency: float = DEFAULT_FREQUENCY
    transmitted_power_dbm: Optional[float] = None
    transmitted_power_standard_deviation: Optional[float] = None
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT
    path_loss_exponent_standard_deviation: Optional[float] = None
    source_type: RadioSourceType = RadioSourceType.WIFI_ACCESS_POINT

    def __post_init__(self) -> None:
        if not self.identifier:
            raise ValueError("identifier must be a non-empty string")

        position = np.asarray(self.position, dtype=float)
        if position.ndim != 1 or position.shape[0] not in (2, 3):
            raise ValueError(
                f"position must have shape (2,) or (3,), got {position.shape}"
            )
        if not np.all(np.isfinite(position)):
            raise ValueError("position must be finite")
        object.__setattr__(self, "position", position)

        if self.position_covariance is not None:
            cov = np.asarray(self.position_covariance, dtype=float)
            d = position.shape[0]
            if cov.shape != (d, d):
                raise ValueError(
                    f"position_covariance must have shape ({d}, {d}), got {cov.shape}"
                )
            if not np.allclose(cov, cov.T):
                raise ValueError("position_covariance must be symmetric")
            object.__setattr__(self, "position_covariance", cov)

        if self.frequency <= 0:
            raise ValueError(f"frequency must be positive, got {self.frequency}")
        if self.path_loss_exponent <= 0:
            raise ValueError(
                f"path_loss_exponent must be positive, got {self.path_loss_exponent}"
            )
        _check_std(
            "transmitted_power_standard_deviation",
            self.transmitted_power_standard_deviation,
        )
        _check_std(
            "path_loss_exponent_standard_deviation",
            self.path_loss_exponent_standard_deviation,
        )

    @property
    def dimensions(self) -> int:
        return int(self.position.shape[0])

    @property
    def has_power(self) -> bool:
        """True when RSSI readings of this source can be turned into distances."""
        return self.transmitted_power_dbm is not None


@dataclass(frozen=True)
class Reading:
    """
    Single measurement of a radio source taken at the device location.

    Use the ``ranging_reading``, ``rssi_reading`` and
    ``ranging_and_rssi_reading`` factories instead of filling the fields by
    hand; the constructor checks that the fields match ``reading_type``.

    Attributes:
        source_id: Identifier of the radio source that was measured.
        reading_type: Kind of measurement.
        distance: Measured distance in meters (ranging readings).
        distance_standard_deviation: Distance uncertainty in meters.
        rssi: Received power in dBm (RSSI readings).
        rssi_standard_deviation: Received power uncertainty in dB.
        num_attempted_measurements: Ranging attempts averaged in the reading.
        num_successful_measurements: Successful ranging attempts.
    """

    source_id: str
    reading_type: ReadingType
    distance: Optional[float] = None
    distance_standard_deviation: Optional[float] = None
    rssi: Optional[float] = None
    rssi_standard_deviation: Optional[float] = None
    num_attempted_measurements: int = 1
    num_successful_measurements: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.reading_type, ReadingType):
            raise TypeError(
                f"reading_type must be a ReadingType, got {type(self.reading_type)}"
            )
        if self.reading_type.has_ranging:
            if self.distance is None:
                raise ValueError(f"{self.reading_type.name} reading requires a distance")
            if self.distance < 0:
                raise ValueError(f"distance must be non-negative, got {self.distance}")
        elif self.distance is not None:
            raise ValueError("RSSI reading cannot carry a distance")

        if self.reading_type.has_rssi:
            if self.rssi is None:
                raise ValueError(f"{self.reading_type.name} reading requires an rssi")
        elif self.rssi is not None:
            raise ValueError("RANGING reading cannot carry an rssi")

        _check_std("distance_standard_deviation", self.distance_standard_deviation)
        _check_std("rssi_standard_deviation", self.rssi_standard_deviation)

        if self.num_attempted_measurements < 1:
            raise ValueError("num_attempted_measurements must be at least 1")
        if not 0 <= self.num_successful_measurements <= self.num_attempted_measurements:
            raise ValueError(
                "num_successful_measurements must be between 0 and "
                "num_attempted_measurements"
            )

    def to_ranging(self) -> "Reading":
        """Return the ranging part of this reading as a RANGING reading."""
        if not self.reading_type.has_ranging:
            raise ValueError("reading has no ranging data")
        return ranging_reading(
            self.source_id,
            self.distance,
            distance_standard_deviation=self.distance_standard_deviation,
            num_attempted_measurements=self.num_attempted_measurements,
            num_successful_measurements=self.num_successful_measurements,
        )

    def to_rssi(self) -> "Reading":
        """Return the RSSI part of this reading as an RSSI reading."""
        if not self.reading_type.has_rssi:
            raise ValueError("reading has no rssi data")
        return rssi_reading(
            self.source_id,
            self.rssi,
            rssi_standard_deviation=self.rssi_standard_deviation,
        )


def ranging_reading(
    source_id: str,
    distance: float,
    distance_standard_deviation: Optional[float] = None,
    num_attempted_measurements: int = 1,
    num_successful_measurements: int = 1,
) -> Reading:
    return Reading(
        source_id=source_id,
        reading_type=ReadingType.RANGING,
        distance=float(distance),
        distance_standard_deviation=distance_standard_deviation,
        num_attempted_measurements=num_attempted_measurements,
        num_successful_measurements=num_successful_measurements,
    )


def rssi_reading(
    source_id: str,
    rssi: float,
    rssi_standard_deviation: Optional[float] = None,
) -> Reading:
    return Reading(
        source_id=source_id,
        reading_type=ReadingType.RSSI,
        rssi=float(rssi),
        rssi_standard_deviation=rssi_standard_deviation,
    )


def ranging_and_rssi_reading(
    source_id: str,
    distance: float,
    rssi: float,
    distance_standard_deviation: Optional[float] = None,
    rssi_standard_deviation: Optional[float] = None,
    num_attempted_measurements: int = 1,
    num_successful_measurements: int = 1,
) -> Reading:
    return Reading(
        source_id=source_id,
        reading_type=ReadingType.RANGING_AND_RSSI,
        distance=float(distance),
        distance_standard_deviation=distance_standard_deviation,
        rssi=float(rssi),
        rssi_standard_deviation=rssi_standard_deviation,
        num_attempted_measurements=num_attempted_measurements,
        num_successful_measurements=num_successful_measurements,
    )


@dataclass(frozen=True)
class Fingerprint:
    """Ordered collection of readings captured at one location."""

    readings: Tuple[Reading, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        readings = tuple(self.readings)
        for reading in readings:
            if not isinstance(reading, Reading):
                raise TypeError(f"expected Reading, got {type(reading)}")
        object.__setattr__(self, "readings", readings)

    def __len__(self) -> int:
        return len(self.readings)

    def __iter__(self) -> Iterator[Reading]:
        return iter(self.readings)

    def __getitem__(self, index: int) -> Reading:
        return self.readings[index]

    @property
    def source_identifiers(self) -> Tuple[str, ...]:
        """Identifiers of the measured sources, in order of first appearance."""
        return tuple(dict.fromkeys(r.source_id for r in self.readings))

    def readings_of(self, source_id: str) -> Tuple[Reading, ...]:
        return tuple(r for r in self.readings if r.source_id == source_id)

    def filter(self, reading_types: Iterable[ReadingType]) -> "Fingerprint":
        """Return a fingerprint keeping only readings of the given kinds."""
        kinds = frozenset(reading_types)
        return Fingerprint(tuple(r for r in self.readings if r.reading_type in kinds))
