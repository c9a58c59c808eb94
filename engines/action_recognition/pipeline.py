"""
Action Pipeline — per-frame orchestration of the recognition engine.

    frame → KeypointExtractor (sync) → pose observers (sync)
          → [FeatureWindowBuilder → ClassifierEnsemble → arbitrate → EventDispatcher] (background)

Pose extraction runs on the caller's (capture) thread, one frame at a time.
The bracketed inference cycle runs on a worker pool so frame delivery never
waits for classification. How many cycles may overlap is set by
InferencePolicy:

  UNBOUNDED    every detected frame starts a cycle; cycles may overlap and
               events may be published out of frame order
  DROP_NEWEST  at most one cycle in flight; frames arriving meanwhile are dropped
  SUPERSEDE    at most one cycle in flight plus one pending frame; a newer
               frame replaces the pending one. Events stay in frame order.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from engines.action_recognition.arbitration import arbitrate
from engines.action_recognition.detector import BoundingBox, Frame, KeypointExtractor, KeypointMap
from engines.action_recognition.dispatcher import ActionEvent, EventDispatcher
from engines.action_recognition.ensemble import ClassifierEnsemble
from engines.action_recognition.features import FeatureWindowBuilder
from engines.action_recognition.rules import ActionRules

logger = logging.getLogger(__name__)

PoseObserver = Callable[[KeypointMap, BoundingBox], None]


class PipelineState(Enum):
    IDLE = 'idle'
    CAPTURING = 'capturing'


class InferencePolicy(str, Enum):
    UNBOUNDED = 'unbounded'
    DROP_NEWEST = 'drop_newest'
    SUPERSEDE = 'supersede'


@dataclass(frozen=True)
class PoseSnapshot:
    """Most recent pose, kept for overlay rendering."""
    keypoints: KeypointMap
    bbox: BoundingBox
    frame_id: int
    timestamp: float


class ActionPipeline:
    """
    Owns the capture lifecycle and drives each frame through the engine.

    Responsibilities:
        - start/stop frame acceptance (and the capture source, if given)
        - synchronous pose extraction + pose observer notification
        - scheduling inference cycles according to the InferencePolicy
        - publishing one ActionEvent per completed cycle
    """

    def __init__(self, extractor: KeypointExtractor,
                 builder: FeatureWindowBuilder,
                 ensemble: ClassifierEnsemble,
                 dispatcher: Optional[EventDispatcher] = None,
                 rules: Optional[ActionRules] = None,
                 policy: InferencePolicy = InferencePolicy.SUPERSEDE,
                 max_workers: int = 4):
        self.extractor = extractor
        self.builder = builder
        self.ensemble = ensemble
        self.dispatcher = dispatcher or EventDispatcher()
        self.rules = rules or ensemble.rules
        self.policy = InferencePolicy(policy)
        self.max_workers = max_workers

        self._state = PipelineState.IDLE
        self._executor: Optional[ThreadPoolExecutor] = None
        self._source = None
        self._observers: List[PoseObserver] = []
        self._latest_pose: Optional[PoseSnapshot] = None
        self._pose_lock = threading.Lock()

        # Guards in-flight bookkeeping; notified whenever a cycle finishes
        self._cond = threading.Condition()
        self._inflight = 0
        self._pending: Optional[Tuple[Frame, KeypointMap]] = None

        self.frames_received = 0
        self.frames_without_pose = 0
        self.frames_rejected = 0
        self.frames_dropped = 0
        self.frames_superseded = 0
        self.cycles_started = 0
        self.encoding_failures = 0
        self.events_published = 0
        self.detections = 0

    # ── Lifecycle ──

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is PipelineState.CAPTURING

    def start(self, source=None) -> None:
        """
        Begin accepting frames. If a capture source is given, the pipeline
        starts it with submit_frame as its frame callback and stops it on stop().
        """
        if self.running:
            logger.warning("ActionPipeline already capturing")
            return

        self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                            thread_name_prefix='inference')
        self._state = PipelineState.CAPTURING
        logger.info(
            f"ActionPipeline started (policy={self.policy.value}, "
            f"classifiers={self.ensemble.categories})"
        )

        if source is not None:
            self._source = source
            source.start(self.submit_frame)

    def stop(self, wait: bool = False) -> None:
        """
        Stop accepting frames. Cycles already running finish and publish;
        a pending (not yet started) frame is discarded.
        """
        if not self.running:
            return

        self._state = PipelineState.IDLE
        if self._source is not None:
            self._source.stop()
            self._source = None

        with self._cond:
            self._pending = None
            executor, self._executor = self._executor, None

        if executor is not None:
            executor.shutdown(wait=wait)
        logger.info("ActionPipeline stopped")

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for every scheduled cycle to finish. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._inflight == 0 and self._pending is None, timeout
            )

    # ── Pose observers ──

    def add_pose_observer(self, observer: PoseObserver) -> None:
        self._observers.append(observer)

    def remove_pose_observer(self, observer: PoseObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    @property
    def latest_pose(self) -> Optional[PoseSnapshot]:
        with self._pose_lock:
            return self._latest_pose

    # ── Per-frame path ──

    def submit_frame(self, frame: Frame) -> bool:
        """
        Process one frame from the capture source.

        Returns:
            True if a pose was found and the frame entered the inference path
            (started or pending), False otherwise
        """
        if not self.running:
            self.frames_rejected += 1
            return False

        self.frames_received += 1
        detection = self.extractor.extract(frame)
        if detection is None:
            self.frames_without_pose += 1
            return False

        keypoints, bbox = detection
        self._publish_pose(frame, keypoints, bbox)
        return self._schedule(frame, keypoints)

    def _publish_pose(self, frame: Frame, keypoints: KeypointMap, bbox: BoundingBox) -> None:
        with self._pose_lock:
            self._latest_pose = PoseSnapshot(keypoints, bbox, frame.frame_id, frame.timestamp)

        for observer in list(self._observers):
            try:
                observer(keypoints, bbox)
            except Exception as e:
                logger.error(f"Pose observer failed: {e}", exc_info=True)

    def _schedule(self, frame: Frame, keypoints: KeypointMap) -> bool:
        with self._cond:
            if self._executor is None:
                return False

            if self._inflight and self.policy is InferencePolicy.DROP_NEWEST:
                self.frames_dropped += 1
                return False

            if self._inflight and self.policy is InferencePolicy.SUPERSEDE:
                if self._pending is not None:
                    self.frames_superseded += 1
                self._pending = (frame, keypoints)
                return True

            self._submit(frame, keypoints)
            return True

    def _submit(self, frame: Frame, keypoints: KeypointMap) -> None:
        """Start a cycle. Caller holds self._cond."""
        self._inflight += 1
        self.cycles_started += 1
        future = self._executor.submit(self.run_cycle, frame, keypoints)
        future.add_done_callback(self._on_cycle_done)

    def _on_cycle_done(self, future: Future) -> None:
        with self._cond:
            self._inflight -= 1
            pending, self._pending = self._pending, None
            if pending is not None and self._executor is not None:
                self._submit(*pending)
            self._cond.notify_all()

    # ── Inference cycle ──

    def run_cycle(self, frame: Frame, keypoints: KeypointMap) -> Optional[ActionEvent]:
        """
        Encode → score → arbitrate → publish for one frame.

        Returns:
            the published ActionEvent, or None if the cycle was skipped
        """
        try:
            tensor = self.builder.encode(keypoints)
            if tensor is None:
                self._count('encoding_failures')
                logger.warning(f"Skipping frame {frame.frame_id}: feature encoding failed")
                return None

            scores = self.ensemble.score_all(tensor)
            winner = arbitrate(
                scores,
                self.rules.detection_threshold,
                self.rules.category_priority,
                self.ensemble.thresholds(),
            )

            label, confidence = winner if winner else (None, 0.0)
            event = ActionEvent(
                label=label,
                confidence=confidence,
                timestamp=frame.timestamp,
                frame_id=frame.frame_id,
                scores={c: r.confidence for c, r in scores.items()},
            )

            if event.detected:
                self._count('detections')
                logger.info(f"{event.message} (frame {frame.frame_id})")
            else:
                logger.debug(f"Normal activity (frame {frame.frame_id})")

            self.dispatcher.publish(event)
            self._count('events_published')
            return event

        except Exception as e:
            logger.error(f"Inference cycle error (frame {frame.frame_id}): {e}", exc_info=True)
            return None

    def _count(self, counter: str) -> None:
        """Increment a stats counter shared by the inference workers."""
        with self._cond:
            setattr(self, counter, getattr(self, counter) + 1)

    def get_stats(self) -> dict:
        with self._cond:
            inflight = self._inflight
            pending = self._pending is not None
        return {
            'state': self._state.value,
            'policy': self.policy.value,
            'frames_received': self.frames_received,
            'frames_without_pose': self.frames_without_pose,
            'frames_rejected': self.frames_rejected,
            'frames_dropped': self.frames_dropped,
            'frames_superseded': self.frames_superseded,
            'cycles_started': self.cycles_started,
            'cycles_inflight': inflight,
            'cycle_pending': pending,
            'encoding_failures': self.encoding_failures,
            'events_published': self.events_published,
            'detections': self.detections,
            'extractor': self.extractor.get_stats(),
            'ensemble': self.ensemble.get_stats(),
            'dispatcher': self.dispatcher.get_stats(),
        }
