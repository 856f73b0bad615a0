"""
Unit tests for the sequential RSSI then ranging estimator.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radiopos.errors import IllegalArgumentError, LockedError, NotReadyError
from radiopos.events import EstimateEnded, EstimateStarted, ProgressChanged
from radiopos.position.methods import Promeds, Ransac
from radiopos.position.sequential import (
    PhaseConfig,
    SequentialRobustPositionEstimator,
    split_fingerprint,
)
from radiopos.rf.measurement_models import received_power
from radiopos.rf.types import (
    Fingerprint,
    RadioSource,
    ReadingType,
    ranging_and_rssi_reading,
    ranging_reading,
    rssi_reading,
)

TX_POWER = 20.0


def _sources(positions, with_power=True):
    return [
        RadioSource(
            f"ap-{i}", position=p, transmitted_power_dbm=TX_POWER if with_power else None
        )
        for i, p in enumerate(positions)
    ]


def _composite_fingerprint(sources, true_position):
    readings = []
    for source in sources:
        distance = float(np.linalg.norm(source.position - true_position))
        readings.append(
            ranging_and_rssi_reading(
                source.identifier, distance, received_power(TX_POWER, distance)
            )
        )
    return Fingerprint(readings)


@pytest.fixture
def square_sources():
    return _sources([[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0], [5.0, -2.0]])


class TestSplitFingerprint:
    def test_split_keeps_scores(self):
        fingerprint = Fingerprint([
            ranging_reading("a", 1.0),
            rssi_reading("b", -40.0),
            ranging_and_rssi_reading("c", 2.0, -45.0),
        ])
        ranging, ranging_scores, rssi, rssi_scores = split_fingerprint(
            fingerprint, np.array([1.0, 2.0, 3.0])
        )

        assert [r.source_id for r in ranging] == ["a", "c"]
        assert all(r.reading_type is ReadingType.RANGING for r in ranging)
        assert_allclose(ranging_scores, [1.0, 3.0])
        assert [r.source_id for r in rssi] == ["b", "c"]
        assert all(r.reading_type is ReadingType.RSSI for r in rssi)
        assert_allclose(rssi_scores, [2.0, 3.0])

    def test_split_without_scores(self):
        _, ranging_scores, _, rssi_scores = split_fingerprint(
            Fingerprint([ranging_reading("a", 1.0)])
        )
        assert ranging_scores is None
        assert rssi_scores is None


class TestPhaseConfig:
    def test_method_normalized(self):
        assert PhaseConfig().method == Promeds()
        assert PhaseConfig(method="ransac").method == Ransac()

    def test_invalid_values(self):
        with pytest.raises(IllegalArgumentError):
            PhaseConfig(confidence=2.0)
        with pytest.raises(IllegalArgumentError):
            PhaseConfig(max_iterations=0)
        with pytest.raises(IllegalArgumentError):
            PhaseConfig(fallback_distance_standard_deviation=0.0)


class TestSequentialEstimation:
    """Test the two-phase pipeline."""

    def test_both_phases_noiseless(self, square_sources):
        true_pos = np.array([4.0, 6.0])
        estimator = SequentialRobustPositionEstimator(
            dimensions=2,
            sources=square_sources,
            fingerprint=_composite_fingerprint(square_sources, true_pos),
            seed=0,
        )
        assert estimator.is_ready()

        position = estimator.estimate()

        assert_allclose(estimator.coarse_position, true_pos, atol=1e-4)
        assert_allclose(position, true_pos, atol=1e-6)
        assert_allclose(estimator.estimated_position, position)
        assert estimator.covariance.shape == (2, 2)
        assert estimator.inliers_data.num_inliers == 5

    def test_ranging_phase_samples_exposed(self, square_sources):
        true_pos = np.array([4.0, 6.0])
        estimator = SequentialRobustPositionEstimator(
            dimensions=2,
            sources=square_sources,
            fingerprint=_composite_fingerprint(square_sources, true_pos),
            seed=0,
        )
        assert estimator.positions is None
        assert estimator.distances is None

        estimator.estimate()

        expected_positions = np.array([s.position for s in square_sources])
        expected_distances = np.linalg.norm(expected_positions - true_pos, axis=1)
        assert_allclose(estimator.positions, expected_positions)
        assert_allclose(estimator.distances, expected_distances)
        assert estimator.distance_standard_deviations.shape == (5,)
        assert np.all(estimator.distance_standard_deviations > 0)
        assert estimator.quality_scores.shape == (5,)
        assert_allclose(estimator.distances, estimator._ranging_estimator.samples.distances)

    def test_ranging_only_fingerprint_skips_rssi_phase(self, square_sources):
        true_pos = np.array([3.0, 7.0])
        fingerprint = Fingerprint([
            ranging_reading(s.identifier, float(np.linalg.norm(s.position - true_pos)))
            for s in square_sources
        ])
        estimator = SequentialRobustPositionEstimator(
            dimensions=2, sources=square_sources, fingerprint=fingerprint, seed=0
        )
        position = estimator.estimate()

        assert estimator.coarse_position is None
        assert_allclose(position, true_pos, atol=1e-6)

    def test_rssi_phase_failure_is_not_fatal(self):
        # RSSI readings only come from the three collinear sources
        sources = _sources([[0.0, 0.0], [5.0, 0.0], [10.0, 0.0], [5.0, 10.0]])
        true_pos = np.array([4.0, 3.0])
        readings = []
        for source in sources:
            distance = float(np.linalg.norm(source.position - true_pos))
            readings.append(ranging_reading(source.identifier, distance))
            if source.position[1] == 0.0:
                readings.append(rssi_reading(source.identifier, received_power(TX_POWER, distance)))

        estimator = SequentialRobustPositionEstimator(
            dimensions=2,
            sources=sources,
            fingerprint=Fingerprint(readings),
            rssi_config=PhaseConfig(max_iterations=10),
            seed=0,
        )
        position = estimator.estimate()

        assert estimator.coarse_position is None
        assert_allclose(position, true_pos, atol=1e-6)

    def test_ranging_phase_seeded_with_coarse_position(self, square_sources):
        true_pos = np.array([4.0, 6.0])
        estimator = SequentialRobustPositionEstimator(
            dimensions=2,
            sources=square_sources,
            fingerprint=_composite_fingerprint(square_sources, true_pos),
            seed=0,
        )
        estimator.estimate()
        assert_allclose(
            estimator._ranging_estimator.initial_position, estimator.coarse_position
        )

    def test_initial_position_used_without_rssi(self, square_sources):
        true_pos = np.array([3.0, 7.0])
        fingerprint = Fingerprint([
            ranging_reading(s.identifier, float(np.linalg.norm(s.position - true_pos)))
            for s in square_sources
        ])
        estimator = SequentialRobustPositionEstimator(
            dimensions=2, sources=square_sources, fingerprint=fingerprint, seed=0
        )
        estimator.initial_position = np.array([5.0, 5.0])
        estimator.estimate()
        assert_allclose(estimator._ranging_estimator.initial_position, [5.0, 5.0])

    def test_rssi_without_transmitted_power_warns(self):
        sources = _sources(
            [[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0]], with_power=False
        )
        true_pos = np.array([4.0, 6.0])
        estimator = SequentialRobustPositionEstimator(
            dimensions=2,
            sources=sources,
            fingerprint=_composite_fingerprint(sources, true_pos),
            seed=0,
        )
        with pytest.warns(RuntimeWarning):
            position = estimator.estimate()
        assert estimator.coarse_position is None
        assert_allclose(position, true_pos, atol=1e-6)


class TestSequentialReadiness:
    def test_needs_more_than_minimum_sources(self):
        sources = _sources([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
        estimator = SequentialRobustPositionEstimator(
            dimensions=2,
            sources=sources,
            fingerprint=_composite_fingerprint(sources, np.array([2.0, 2.0])),
        )
        assert not estimator.is_ready()
        with pytest.raises(NotReadyError):
            estimator.estimate()

    def test_needs_one_reading_per_source(self, square_sources):
        fingerprint = Fingerprint([ranging_reading("ap-0", 1.0), ranging_reading("ap-1", 2.0)])
        estimator = SequentialRobustPositionEstimator(
            dimensions=2, sources=square_sources, fingerprint=fingerprint
        )
        assert not estimator.is_ready()

    def test_too_few_sources_rejected(self):
        estimator = SequentialRobustPositionEstimator(dimensions=3)
        with pytest.raises(IllegalArgumentError):
            estimator.sources = _sources([[0.0, 0.0, 0.0]] * 3)

    def test_config_type_checked(self):
        estimator = SequentialRobustPositionEstimator()
        with pytest.raises(IllegalArgumentError):
            estimator.rssi_config = {"method": "ransac"}


class TestSequentialEvents:
    def test_progress_remapped_to_phases(self, square_sources):
        events = []
        estimator = SequentialRobustPositionEstimator(
            dimensions=2,
            sources=square_sources,
            fingerprint=_composite_fingerprint(square_sources, np.array([4.0, 6.0])),
            listener=events.append,
            seed=0,
        )
        estimator.estimate()

        assert isinstance(events[0], EstimateStarted)
        assert isinstance(events[-1], EstimateEnded)
        assert all(e.estimator is estimator for e in events)

        progress = [e.progress for e in events if isinstance(e, ProgressChanged)]
        # each phase ends with its own completion event
        assert 0.5 in progress
        assert progress[-1] == 1.0
        assert progress == sorted(progress)
        assert all(0.0 <= p <= 1.0 for p in progress)

    def test_progress_of_first_phase_in_lower_half(self, square_sources):
        events = []
        estimator = SequentialRobustPositionEstimator(
            dimensions=2,
            sources=square_sources,
            fingerprint=_composite_fingerprint(square_sources, np.array([4.0, 6.0])),
            listener=events.append,
            rssi_config=PhaseConfig(method=Ransac(threshold=1e-3), max_iterations=50),
            seed=0,
        )
        estimator.progress_delta = 0.05
        estimator.estimate()

        progress = [e.progress for e in events if isinstance(e, ProgressChanged)]
        first_phase = progress[: progress.index(0.5) + 1]
        assert all(p <= 0.5 for p in first_phase)
        assert all(p >= 0.5 for p in progress[len(first_phase):])

    def test_setter_inside_listener_raises_locked(self, square_sources):
        def listener(event):
            if isinstance(event, EstimateStarted):
                event.estimator.progress_delta = 0.1

        estimator = SequentialRobustPositionEstimator(
            dimensions=2,
            sources=square_sources,
            fingerprint=_composite_fingerprint(square_sources, np.array([4.0, 6.0])),
            listener=listener,
        )
        with pytest.raises(LockedError):
            estimator.estimate()
        assert not estimator.is_locked()

    def test_nested_estimate_from_progress_raises_locked(self, square_sources):
        def listener(event):
            if isinstance(event, ProgressChanged):
                event.estimator.estimate()

        estimator = SequentialRobustPositionEstimator(
            dimensions=2,
            sources=square_sources,
            fingerprint=_composite_fingerprint(square_sources, np.array([4.0, 6.0])),
            listener=listener,
        )
        with pytest.raises(LockedError):
            estimator.estimate()
        assert not estimator.is_locked()
