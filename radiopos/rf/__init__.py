"""
Radio source, reading and fingerprint types plus RF measurement models.

Submodules:
    types: RadioSource, Reading, Fingerprint and reading factories
    measurement_models: path-loss model, RSSI to distance, uncertainty propagation
"""

from radiopos.rf.measurement_models import (
    DEFAULT_FREQUENCY,
    DEFAULT_PATH_LOSS_EXPONENT,
    SPEED_OF_LIGHT,
    projected_position_variance,
    received_power,
    reference_distance,
    rss_pathloss,
    rss_to_distance,
    rssi_distance_standard_deviation,
    rssi_to_distance,
)
from radiopos.rf.types import (
    Fingerprint,
    RadioSource,
    RadioSourceType,
    Reading,
    ReadingType,
    ranging_and_rssi_reading,
    ranging_reading,
    rssi_reading,
)

__all__ = [
    # Measurement models
    "DEFAULT_FREQUENCY",
    "DEFAULT_PATH_LOSS_EXPONENT",
    "SPEED_OF_LIGHT",
    "projected_position_variance",
    "received_power",
    "reference_distance",
    "rss_pathloss",
    "rss_to_distance",
    "rssi_distance_standard_deviation",
    "rssi_to_distance",
    # Types
    "Fingerprint",
    "RadioSource",
    "RadioSourceType",
    "Reading",
    "ReadingType",
    "ranging_and_rssi_reading",
    "ranging_reading",
    "rssi_reading",
]
