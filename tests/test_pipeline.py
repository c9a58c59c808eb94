"""
Tests for ActionPipeline — end-to-end frame → ActionEvent behaviour with
stand-in pose and classifier models.
"""

import threading

import numpy as np
import pytest
from unittest.mock import MagicMock

from engines.action_recognition.detector import Frame, KeypointExtractor, KeypointMap
from engines.action_recognition.dispatcher import EventDispatcher
from engines.action_recognition.ensemble import ClassifierEnsemble, ClassifierSpec
from engines.action_recognition.features import FeatureWindowBuilder
from engines.action_recognition.pipeline import ActionPipeline, InferencePolicy, PipelineState
from engines.action_recognition.rules import ActionRules

POSE = KeypointMap({
    'nose': (0.5, 0.1), 'neck': (0.5, 0.2),
    'left_hip': (0.45, 0.55), 'right_hip': (0.55, 0.55),
    'left_ankle': (0.45, 0.95), 'right_ankle': (0.55, 0.95),
})


class FakePoseModel:
    """Returns POSE for every frame unless told otherwise."""

    def __init__(self, keypoints=POSE):
        self.keypoints = keypoints
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        return self.keypoints


class FixedClassifier:
    def __init__(self, abnormal):
        self.abnormal = abnormal
        self.calls = 0

    def predict(self, tensor):
        self.calls += 1
        return {'normal': 1.0 - self.abnormal, 'abnormal': self.abnormal}


class GatedClassifier(FixedClassifier):
    """Blocks every prediction until the gate opens."""

    def __init__(self, abnormal=0.5):
        super().__init__(abnormal)
        self.gate = threading.Event()
        self.entered = threading.Event()

    def predict(self, tensor):
        self.entered.set()
        self.gate.wait(5)
        return super().predict(tensor)


def _frame(frame_id):
    return Frame(image=np.zeros((48, 64, 3), dtype=np.uint8),
                 timestamp=100.0 + frame_id, frame_id=frame_id)


def _pipeline(classifiers, pose_model=None, policy=InferencePolicy.UNBOUNDED, rules=None):
    rules = rules or ActionRules()
    specs = [ClassifierSpec(category=c, model=m) for c, m in classifiers.items()]
    pipeline = ActionPipeline(
        extractor=KeypointExtractor(pose_model or FakePoseModel()),
        builder=FeatureWindowBuilder(rules),
        ensemble=ClassifierEnsemble(specs, rules),
        dispatcher=EventDispatcher(),
        rules=rules,
        policy=policy,
    )
    events = []
    pipeline.dispatcher.subscribe(events.append)
    return pipeline, events


def _finish(pipeline):
    assert pipeline.drain(timeout=5)
    assert pipeline.dispatcher.join(timeout=5)


class TestPipelineScenarios:
    def test_highest_confidence_action_published(self):
        pipeline, events = _pipeline({
            'arrest': FixedClassifier(0.1), 'vandalism': FixedClassifier(0.6),
            'abuse': FixedClassifier(0.05), 'shoplifting': FixedClassifier(0.3),
        })
        pipeline.start()
        assert pipeline.submit_frame(_frame(1)) is True
        _finish(pipeline)

        assert len(events) == 1
        event = events[0]
        assert event.label == 'vandalism'
        assert event.confidence == pytest.approx(0.6)
        assert event.timestamp == 101.0
        assert event.frame_id == 1
        assert event.scores['shoplifting'] == pytest.approx(0.3)
        pipeline.stop()

    def test_tie_resolved_by_priority(self):
        rules = ActionRules(category_priority=['arrest', 'vandalism'])
        pipeline, events = _pipeline(
            {'vandalism': FixedClassifier(0.5), 'arrest': FixedClassifier(0.5)}, rules=rules,
        )
        pipeline.start()
        pipeline.submit_frame(_frame(1))
        _finish(pipeline)

        assert events[0].label == 'arrest'
        assert events[0].confidence == pytest.approx(0.5)
        pipeline.stop()

    def test_normal_activity_still_publishes_event(self):
        pipeline, events = _pipeline({
            'abuse': FixedClassifier(0.1), 'arrest': FixedClassifier(0.15),
        })
        pipeline.start()
        pipeline.submit_frame(_frame(1))
        _finish(pipeline)

        assert len(events) == 1
        assert events[0].label is None
        assert events[0].confidence == 0.0
        assert events[0].message == 'Normal activity'
        pipeline.stop()

    def test_no_pose_no_event_no_classifier_call(self):
        classifier = FixedClassifier(0.9)
        pipeline, events = _pipeline({'abuse': classifier}, pose_model=FakePoseModel(keypoints=None))
        pipeline.start()
        assert pipeline.submit_frame(_frame(1)) is False
        _finish(pipeline)

        assert events == []
        assert classifier.calls == 0
        assert pipeline.get_stats()['frames_without_pose'] == 1
        pipeline.stop()

    def test_pose_model_error_skips_frame(self):
        pose_model = MagicMock()
        pose_model.detect.side_effect = RuntimeError('request failed')
        pipeline, events = _pipeline({'abuse': FixedClassifier(0.9)}, pose_model=pose_model)
        pipeline.start()
        assert pipeline.submit_frame(_frame(1)) is False
        _finish(pipeline)
        assert events == []
        pipeline.stop()

    def test_partial_ensemble_failure(self):
        broken = MagicMock()
        broken.predict.side_effect = RuntimeError('model crashed')
        pipeline, events = _pipeline({
            'abuse': FixedClassifier(0.3), 'arrest': broken, 'vandalism': FixedClassifier(0.25),
        })
        pipeline.start()
        pipeline.submit_frame(_frame(1))
        _finish(pipeline)

        assert events[0].label == 'abuse'
        assert 'arrest' not in events[0].scores
        pipeline.stop()

    def test_encoding_failure_skips_cycle(self):
        pipeline, events = _pipeline({'abuse': FixedClassifier(0.9)})
        pipeline.builder = MagicMock()
        pipeline.builder.encode.return_value = None
        pipeline.start()
        pipeline.submit_frame(_frame(1))
        _finish(pipeline)

        assert events == []
        assert pipeline.get_stats()['encoding_failures'] == 1
        pipeline.stop()


class TestPoseObservers:
    def test_observer_notified_before_inference(self):
        pipeline, _ = _pipeline({'abuse': FixedClassifier(0.1)})
        seen = []
        pipeline.add_pose_observer(lambda kp, bbox: seen.append((kp, bbox)))
        pipeline.start()
        pipeline.submit_frame(_frame(3))

        # Observer runs synchronously inside submit_frame
        assert len(seen) == 1
        keypoints, bbox = seen[0]
        assert keypoints is not None and keypoints['nose'] == (0.5, 0.1)
        assert bbox.y == pytest.approx(0.1)
        assert bbox.height == pytest.approx(0.85)

        snapshot = pipeline.latest_pose
        assert snapshot.frame_id == 3
        assert snapshot.keypoints == POSE
        _finish(pipeline)
        pipeline.stop()

    def test_failing_observer_does_not_stop_inference(self):
        pipeline, events = _pipeline({'abuse': FixedClassifier(0.9)})

        def broken(kp, bbox):
            raise RuntimeError('overlay crashed')

        pipeline.add_pose_observer(broken)
        pipeline.start()
        assert pipeline.submit_frame(_frame(1)) is True
        _finish(pipeline)
        assert events[0].label == 'abuse'
        pipeline.stop()

    def test_remove_observer(self):
        pipeline, _ = _pipeline({})
        seen = []
        observer = lambda kp, bbox: seen.append(kp)
        pipeline.add_pose_observer(observer)
        pipeline.remove_pose_observer(observer)
        pipeline.start()
        pipeline.submit_frame(_frame(1))
        _finish(pipeline)
        assert seen == []
        pipeline.stop()


class TestLifecycle:
    def test_idle_until_started(self):
        pose_model = FakePoseModel()
        pipeline, events = _pipeline({'abuse': FixedClassifier(0.9)}, pose_model=pose_model)
        assert pipeline.state is PipelineState.IDLE
        assert pipeline.submit_frame(_frame(1)) is False
        assert pose_model.calls == 0
        assert pipeline.get_stats()['frames_rejected'] == 1

    def test_stop_rejects_new_frames(self):
        pipeline, _ = _pipeline({'abuse': FixedClassifier(0.9)})
        pipeline.start()
        assert pipeline.state is PipelineState.CAPTURING
        pipeline.stop(wait=True)
        assert pipeline.state is PipelineState.IDLE
        assert pipeline.submit_frame(_frame(1)) is False

    def test_inflight_cycle_completes_after_stop(self):
        gated = GatedClassifier(0.7)
        pipeline, events = _pipeline({'arrest': gated})
        pipeline.start()
        pipeline.submit_frame(_frame(1))
        assert gated.entered.wait(5)

        pipeline.stop(wait=False)
        gated.gate.set()
        _finish(pipeline)

        assert [e.label for e in events] == ['arrest']

    def test_restart(self):
        pipeline, events = _pipeline({'abuse': FixedClassifier(0.9)})
        pipeline.start()
        pipeline.stop(wait=True)
        pipeline.start()
        pipeline.submit_frame(_frame(2))
        _finish(pipeline)
        assert [e.frame_id for e in events] == [2]
        pipeline.stop()

    def test_owns_capture_source(self):
        source = MagicMock()
        pipeline, _ = _pipeline({})
        pipeline.start(source)
        source.start.assert_called_once_with(pipeline.submit_frame)

        pipeline.stop()
        source.stop.assert_called_once()


class TestInferencePolicies:
    def test_unbounded_overlaps_cycles(self):
        gated = GatedClassifier()
        pipeline, events = _pipeline({'arrest': gated}, policy=InferencePolicy.UNBOUNDED)
        pipeline.start()
        for i in range(1, 4):
            assert pipeline.submit_frame(_frame(i)) is True

        assert pipeline.get_stats()['cycles_started'] == 3
        gated.gate.set()
        _finish(pipeline)
        assert sorted(e.frame_id for e in events) == [1, 2, 3]
        pipeline.stop()

    def test_drop_newest_keeps_single_cycle(self):
        gated = GatedClassifier()
        pipeline, events = _pipeline({'arrest': gated}, policy=InferencePolicy.DROP_NEWEST)
        pipeline.start()
        assert pipeline.submit_frame(_frame(1)) is True
        assert gated.entered.wait(5)
        assert pipeline.submit_frame(_frame(2)) is False
        assert pipeline.submit_frame(_frame(3)) is False

        gated.gate.set()
        _finish(pipeline)
        assert [e.frame_id for e in events] == [1]
        assert pipeline.get_stats()['frames_dropped'] == 2
        pipeline.stop()

    def test_supersede_runs_latest_pending_frame(self):
        gated = GatedClassifier()
        pipeline, events = _pipeline({'arrest': gated}, policy=InferencePolicy.SUPERSEDE)
        pipeline.start()
        pipeline.submit_frame(_frame(1))
        assert gated.entered.wait(5)
        pipeline.submit_frame(_frame(2))
        pipeline.submit_frame(_frame(3))

        gated.gate.set()
        _finish(pipeline)
        assert [e.frame_id for e in events] == [1, 3]
        stats = pipeline.get_stats()
        assert stats['frames_superseded'] == 1
        assert stats['cycles_started'] == 2
        pipeline.stop()

    def test_stop_discards_pending_frame(self):
        gated = GatedClassifier()
        pipeline, events = _pipeline({'arrest': gated}, policy=InferencePolicy.SUPERSEDE)
        pipeline.start()
        pipeline.submit_frame(_frame(1))
        assert gated.entered.wait(5)
        pipeline.submit_frame(_frame(2))

        pipeline.stop(wait=False)
        gated.gate.set()
        _finish(pipeline)
        assert [e.frame_id for e in events] == [1]

    def test_policy_from_string(self):
        pipeline, _ = _pipeline({}, policy='drop_newest')
        assert pipeline.policy is InferencePolicy.DROP_NEWEST


class TestStatsCounters:
    def test_counts_exact_under_overlapping_cycles(self):
        pipeline, events = _pipeline({'abuse': FixedClassifier(0.9)},
                                     policy=InferencePolicy.UNBOUNDED)
        pipeline.max_workers = 8
        pipeline.start()
        for i in range(1, 201):
            pipeline.submit_frame(_frame(i))
        _finish(pipeline)

        stats = pipeline.get_stats()
        assert stats['cycles_started'] == 200
        assert stats['events_published'] == 200
        assert stats['detections'] == 200
        assert len(events) == 200
        pipeline.stop()

    def test_encoding_failures_counted_under_overlapping_cycles(self):
        pipeline, events = _pipeline({'abuse': FixedClassifier(0.9)},
                                     policy=InferencePolicy.UNBOUNDED)
        pipeline.builder = MagicMock()
        pipeline.builder.encode.return_value = None
        pipeline.max_workers = 8
        pipeline.start()
        for i in range(1, 201):
            pipeline.submit_frame(_frame(i))
        _finish(pipeline)

        assert pipeline.get_stats()['encoding_failures'] == 200
        assert events == []
        pipeline.stop()
