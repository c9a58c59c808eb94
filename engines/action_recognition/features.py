"""
Feature Window Builder — encodes a KeypointMap into the fixed-shape tensor
the classifiers consume: (window, channels, joints), default (60, 3, 18).

Channel layout per joint slot:
  0 → x (normalised), 1 → y (normalised)
Any further channels, and every cell without pose data, hold the configured
missing value.

Single-frame mode (default) writes the current frame into window step 0 and
leaves the remaining steps at the missing value. Temporal mode keeps a
rolling buffer of the last `window` frames, oldest first, right-aligned.
Frames enter the buffer in the order encode() is called; under the UNBOUNDED
inference policy that is worker scheduling order, not frame order.
"""

import logging
import threading
from collections import deque
from typing import Deque, Optional

import numpy as np

from engines.action_recognition.detector import KeypointMap
from engines.action_recognition.errors import EncodingFailure
from engines.action_recognition.joints import JOINT_INDEX, JOINT_NAMES
from engines.action_recognition.rules import ActionRules

logger = logging.getLogger(__name__)

# Classifier input: (window, channels, joints) float32
FeatureTensor = np.ndarray

X_CHANNEL = 0
Y_CHANNEL = 1

class FeatureWindowBuilder:
    """Builds FeatureTensors from per-frame keypoint maps."""

    def __init__(self, rules: Optional[ActionRules] = None):
        self.rules = rules or ActionRules()
        if self.rules.joint_count < len(JOINT_NAMES):
            raise ValueError(
                f"tensor_shape reserves {self.rules.joint_count} joint slots, "
                f"need {len(JOINT_NAMES)}"
            )
        self._history: Deque[np.ndarray] = deque(maxlen=self.rules.window)
        self._lock = threading.Lock()

    @property
    def shape(self):
        return self.rules.tensor_shape

    @property
    def temporal(self) -> bool:
        return self.rules.temporal_window

    def encode(self, keypoints: KeypointMap) -> Optional[FeatureTensor]:
        """
        Encode one frame's keypoints.

        Returns:
            (window, channels, joints) float32 array, or None if the tensor
            could not be built (logged, the inference cycle is skipped)
        """
        try:
            frame_slice = self._encode_frame(keypoints)
            if not self.temporal:
                tensor = self._allocate()
                tensor[0] = frame_slice
                return tensor

            with self._lock:
                self._history.append(frame_slice)
                history = list(self._history)
            tensor = self._allocate()
            tensor[self.rules.window - len(history):] = np.stack(history)
            return tensor

        except EncodingFailure as e:
            logger.error(f"Feature encoding failed: {e}")
            return None

    def reset(self) -> None:
        """Forget the rolling history (temporal mode only)."""
        with self._lock:
            self._history.clear()

    def _allocate(self) -> np.ndarray:
        try:
            return np.full(self.rules.tensor_shape, self.rules.missing_value, dtype=np.float32)
        except (MemoryError, ValueError) as e:
            raise EncodingFailure(f"cannot allocate tensor {self.rules.tensor_shape}: {e}") from e

    def _encode_frame(self, keypoints: KeypointMap) -> np.ndarray:
        """(channels, joints) slice for a single frame."""
        _, channels, joints = self.rules.tensor_shape
        try:
            frame_slice = np.full((channels, joints), self.rules.missing_value, dtype=np.float32)
        except (MemoryError, ValueError) as e:
            raise EncodingFailure(f"cannot allocate frame slice: {e}") from e

        for name, (x, y) in keypoints.items():
            slot = JOINT_INDEX[name]
            frame_slice[X_CHANNEL, slot] = x
            frame_slice[Y_CHANNEL, slot] = y
        return frame_slice

    def get_stats(self) -> dict:
        return {
            'shape': list(self.rules.tensor_shape),
            'temporal': self.temporal,
            'buffered_frames': len(self._history),
        }
