"""
Unit tests for building lateration samples from sources and fingerprints.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radiopos.position.helper import build_lateration_samples
from radiopos.rf.measurement_models import rssi_to_distance
from radiopos.rf.types import (
    Fingerprint,
    RadioSource,
    ReadingType,
    ranging_and_rssi_reading,
    ranging_reading,
    rssi_reading,
)


def _sources(with_power=True, covariance=None):
    power = -10.0 if with_power else None
    positions = [[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]]
    return [
        RadioSource(
            f"ap-{i}", position=p, transmitted_power_dbm=power, position_covariance=covariance
        )
        for i, p in enumerate(positions)
    ]


class TestBuildLaterationSamples:
    """Test conversion of readings into samples."""

    def test_ranging_readings(self):
        sources = _sources()
        fingerprint = Fingerprint([
            ranging_reading("ap-0", 5.0, 0.2),
            ranging_reading("ap-1", 6.0, 0.3),
            ranging_reading("ap-2", 7.0, 0.4),
        ])
        samples = build_lateration_samples(sources, fingerprint)

        assert len(samples) == 3
        assert_allclose(samples.distances, [5.0, 6.0, 7.0])
        assert_allclose(samples.distance_standard_deviations, [0.2, 0.3, 0.4])
        assert_allclose(samples.positions[1], [10.0, 0.0])

    def test_sources_outer_readings_inner_order(self):
        sources = _sources()
        fingerprint = Fingerprint([
            ranging_reading("ap-2", 7.0),
            ranging_reading("ap-0", 5.0),
            ranging_reading("ap-0", 5.5),
        ])
        samples = build_lateration_samples(sources, fingerprint)

        assert list(samples.source_indices) == [0, 0, 2]
        assert list(samples.reading_indices) == [1, 2, 0]
        assert_allclose(samples.distances, [5.0, 5.5, 7.0])

    def test_unknown_sources_are_ignored(self):
        fingerprint = Fingerprint([ranging_reading("other", 3.0), ranging_reading("ap-1", 4.0)])
        samples = build_lateration_samples(_sources(), fingerprint)
        assert len(samples) == 1
        assert samples.source_indices[0] == 1

    def test_composite_reading_gives_two_samples(self):
        sources = _sources()
        fingerprint = Fingerprint([
            ranging_and_rssi_reading("ap-0", 5.0, -45.0, 0.1, 2.0),
        ])
        samples = build_lateration_samples(sources, fingerprint)

        assert len(samples) == 2
        assert samples.distances[0] == pytest.approx(5.0)
        assert samples.distances[1] == pytest.approx(rssi_to_distance(-45.0, -10.0))
        assert list(samples.reading_indices) == [0, 0]

    def test_rssi_without_transmitted_power_is_skipped(self):
        sources = _sources(with_power=False)
        fingerprint = Fingerprint([rssi_reading("ap-0", -50.0), ranging_reading("ap-1", 4.0)])

        with pytest.warns(RuntimeWarning):
            samples = build_lateration_samples(sources, fingerprint)
        assert len(samples) == 1
        assert samples.distances[0] == 4.0

    def test_reading_types_filter(self):
        sources = _sources()
        fingerprint = Fingerprint([
            ranging_reading("ap-0", 5.0),
            rssi_reading("ap-1", -50.0),
        ])
        samples = build_lateration_samples(
            sources, fingerprint, reading_types=[ReadingType.RSSI]
        )
        assert len(samples) == 1
        assert samples.source_indices[0] == 1

    def test_fallback_standard_deviation(self):
        fingerprint = Fingerprint([ranging_reading("ap-0", 5.0), ranging_reading("ap-1", 6.0, 0.0)])
        samples = build_lateration_samples(
            _sources(), fingerprint, fallback_distance_standard_deviation=0.25
        )
        assert_allclose(samples.distance_standard_deviations, [0.25, 0.25])

    def test_invalid_fallback(self):
        with pytest.raises(ValueError):
            build_lateration_samples(
                _sources(), Fingerprint([]), fallback_distance_standard_deviation=0.0
            )

    def test_quality_scores_are_summed(self):
        fingerprint = Fingerprint([ranging_reading("ap-0", 5.0), ranging_reading("ap-2", 7.0)])
        samples = build_lateration_samples(
            _sources(),
            fingerprint,
            source_quality_scores=np.array([1.0, 2.0, 3.0]),
            reading_quality_scores=np.array([0.5, 0.25]),
        )
        assert_allclose(samples.quality_scores, [1.5, 3.25])

    def test_empty_fingerprint(self):
        samples = build_lateration_samples(_sources(), Fingerprint([]))
        assert len(samples) == 0
        assert samples.positions.shape == (0, 2)


class TestPositionCovariance:
    """Test projection of source position covariance into distance variance."""

    def test_projection_from_initial_position(self):
        cov = np.diag([4.0, 1.0])
        sources = _sources(covariance=cov)
        fingerprint = Fingerprint([ranging_reading("ap-1", 10.0, 1.0)])

        samples = build_lateration_samples(
            sources, fingerprint, initial_position=np.array([0.0, 0.0])
        )
        # line of sight along x: 1 + 4
        assert samples.distance_standard_deviations[0] == pytest.approx(np.sqrt(5.0))

    def test_projection_from_centroid(self):
        cov = np.diag([4.0, 1.0])
        sources = _sources(covariance=cov)
        fingerprint = Fingerprint([
            ranging_reading("ap-1", 10.0, 1.0),
            ranging_reading("ap-2", 10.0, 1.0),
        ])

        samples = build_lateration_samples(sources, fingerprint)

        centroid = np.array([5.0, 5.0])
        u = (np.array([10.0, 0.0]) - centroid) / np.linalg.norm([5.0, -5.0])
        expected = np.sqrt(1.0 + u @ cov @ u)
        assert samples.distance_standard_deviations[0] == pytest.approx(expected)

    def test_covariance_disabled(self):
        sources = _sources(covariance=np.diag([4.0, 1.0]))
        fingerprint = Fingerprint([ranging_reading("ap-1", 10.0, 1.0)])
        samples = build_lateration_samples(
            sources, fingerprint, use_position_covariance=False,
            initial_position=np.array([0.0, 0.0]),
        )
        assert samples.distance_standard_deviations[0] == pytest.approx(1.0)

    def test_covariance_without_reading_std(self):
        sources = _sources(covariance=np.diag([4.0, 4.0]))
        fingerprint = Fingerprint([ranging_reading("ap-1", 10.0)])
        samples = build_lateration_samples(
            sources, fingerprint, initial_position=np.array([0.0, 0.0])
        )
        assert samples.distance_standard_deviations[0] == pytest.approx(2.0)

    def test_non_psd_covariance_is_ignored(self):
        sources = _sources(covariance=np.diag([-4.0, 1.0]))
        fingerprint = Fingerprint([ranging_reading("ap-1", 10.0, 1.0)])

        with pytest.warns(RuntimeWarning):
            samples = build_lateration_samples(
                sources, fingerprint, initial_position=np.array([0.0, 0.0])
            )
        assert samples.distance_standard_deviations[0] == pytest.approx(1.0)
