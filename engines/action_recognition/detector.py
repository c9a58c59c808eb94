"""
Keypoint Extractor — YOLOv8-pose wrapper.
Turns one camera frame into a normalised joint → (x, y) map plus the
bounding box around the detected joints. Single subject per frame.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional, Tuple

import numpy as np

from engines.action_recognition.errors import ModelUnavailable, NoDetection
from engines.action_recognition.joints import COCO_KEYPOINTS, JOINT_INDEX

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


@dataclass(frozen=True)
class Frame:
    """A raw BGR image buffer with its capture timestamp."""
    image: np.ndarray
    timestamp: float = field(default_factory=time.time)
    frame_id: int = 0

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in normalised image space (origin + size)."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    @classmethod
    def around(cls, points) -> 'BoundingBox':
        """Min/max extent over the given (x, y) points; empty input → zero box."""
        points = list(points)
        if not points:
            return cls()
        xs = [p[0] for p in points]
        ys = [p[1] for p in points]
        return cls(x=min(xs), y=min(ys),
                   width=max(xs) - min(xs), height=max(ys) - min(ys))

    def to_pixels(self, width: int, height: int) -> Tuple[int, int, int, int]:
        """[x1, y1, x2, y2] in pixel coordinates for drawing."""
        return (int(self.x * width), int(self.y * height),
                int(self.max_x * width), int(self.max_y * height))

    def to_dict(self) -> dict:
        return {
            'x': round(self.x, 4),
            'y': round(self.y, 4),
            'width': round(self.width, 4),
            'height': round(self.height, 4),
        }


class KeypointMap(Mapping):
    """
    Immutable joint name → (x, y) mapping in normalised [0, 1] image space.
    A joint missing from the map was not detected this frame.
    """

    def __init__(self, points: Optional[Mapping[str, Point]] = None):
        data: Dict[str, Point] = {}
        for name, (x, y) in (points or {}).items():
            if name not in JOINT_INDEX:
                raise ValueError(f"Unknown joint: {name}")
            data[name] = (float(x), float(y))
        self._points = data

    def __getitem__(self, name: str) -> Point:
        return self._points[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __repr__(self) -> str:
        return f"KeypointMap({self._points!r})"

    def bounding_box(self) -> BoundingBox:
        return BoundingBox.around(self._points.values())

    def to_dict(self) -> dict:
        return {name: [round(x, 4), round(y, 4)] for name, (x, y) in self._points.items()}


def keypoints_from_coco(kps: np.ndarray, width: int, height: int,
                        min_conf: float = 0.3) -> KeypointMap:
    """
    Convert one person's COCO-17 keypoints into a KeypointMap.

    Args:
        kps: (17, 3) array of [x_px, y_px, confidence]
        width, height: frame size used for normalisation
        min_conf: keypoints below this confidence count as not detected
    """
    points: Dict[str, Point] = {}
    for idx, name in enumerate(COCO_KEYPOINTS):
        x, y, conf = (float(v) for v in kps[idx][:3])
        if conf < min_conf:
            continue
        # ultralytics reports invisible keypoints at the origin
        if x <= 0.0 and y <= 0.0:
            continue
        points[name] = (
            float(np.clip(x / width, 0.0, 1.0)),
            float(np.clip(y / height, 0.0, 1.0)),
        )

    # Neck isn't a COCO keypoint: synthesise it from the shoulders
    if 'left_shoulder' in points and 'right_shoulder' in points:
        ls, rs = points['left_shoulder'], points['right_shoulder']
        points['neck'] = ((ls[0] + rs[0]) / 2.0, (ls[1] + rs[1]) / 2.0)

    return KeypointMap(points)


class YoloPoseModel:
    """
    Pose model backed by YOLOv8s-pose (or compatible).

    Uses GPU with FP16 when CUDA is present. Implements
    detect(frame) -> Optional[KeypointMap] for the primary subject.
    """

    def __init__(self, model_name: str = 'yolov8s-pose.pt',
                 gpu_id: int = 0, conf_threshold: float = 0.5,
                 min_keypoint_conf: float = 0.3, use_half: bool = True):
        self.model = None
        self.model_name = model_name
        self.gpu_id = gpu_id
        self.conf_threshold = conf_threshold
        self.min_keypoint_conf = min_keypoint_conf
        self.use_half = use_half
        self.device = f'cuda:{gpu_id}'
        self._init_model()

    def _init_model(self):
        try:
            import torch
            from ultralytics import YOLO

            if not torch.cuda.is_available():
                self.device = 'cpu'
                self.use_half = False
                logger.warning("CUDA not available — pose model will use CPU")

            self.model = YOLO(self.model_name)

            # Warm up with a dummy frame to load weights onto the device
            dummy = np.zeros((640, 640, 3), dtype=np.uint8)
            self.model(dummy, device=self.device, half=self.use_half, verbose=False)

            logger.info(
                f"YoloPoseModel: {self.model_name} loaded on {self.device} "
                f"(half={self.use_half})"
            )
        except Exception as e:
            self.model = None
            raise ModelUnavailable(self.model_name, str(e)) from e

    def detect(self, frame: Frame) -> Optional[KeypointMap]:
        """Keypoints of the highest-confidence person, or None if nobody is found."""
        results = self.model(
            frame.image,
            device=self.device,
            conf=self.conf_threshold,
            half=self.use_half,
            verbose=False,
        )
        if not results:
            return None

        result = results[0]
        if result.keypoints is None or result.keypoints.data.shape[0] == 0:
            return None

        kps_data = result.keypoints.data.cpu().numpy()  # (N, 17, 3)
        if result.boxes is not None and len(result.boxes) == kps_data.shape[0]:
            person_scores = result.boxes.conf.cpu().numpy()
        else:
            person_scores = kps_data[:, :, 2].mean(axis=1)
        primary = int(np.argmax(person_scores))

        return keypoints_from_coco(kps_data[primary], frame.width, frame.height,
                                   self.min_keypoint_conf)

    def get_stats(self) -> dict:
        return {
            'model': self.model_name,
            'device': self.device,
            'half': self.use_half,
            'conf_threshold': self.conf_threshold,
            'min_keypoint_conf': self.min_keypoint_conf,
        }


class KeypointExtractor:
    """
    Runs the pose model on one frame at a time.

    The underlying model shares one request handler, so calls are serialised;
    a model error for a frame is logged and treated as no detection.
    """

    def __init__(self, pose_model):
        if pose_model is None:
            raise ModelUnavailable('pose', 'no pose model supplied')
        self.pose_model = pose_model
        self._lock = threading.Lock()
        self.frames_seen = 0
        self.frames_detected = 0
        self.model_errors = 0

    def extract(self, frame: Frame) -> Optional[Tuple[KeypointMap, BoundingBox]]:
        """
        Returns:
            (KeypointMap, BoundingBox) for the detected subject, or None
        """
        with self._lock:
            self.frames_seen += 1
            try:
                keypoints = self._detect(frame)
            except NoDetection:
                return None
            except Exception as e:
                self.model_errors += 1
                logger.error(f"Pose detection error (frame {frame.frame_id}): {e}")
                return None

            self.frames_detected += 1
            return keypoints, keypoints.bounding_box()

    def _detect(self, frame: Frame) -> KeypointMap:
        keypoints = self.pose_model.detect(frame)
        if keypoints is None or len(keypoints) == 0:
            raise NoDetection()
        if not isinstance(keypoints, KeypointMap):
            keypoints = KeypointMap(keypoints)
        return keypoints

    def get_stats(self) -> dict:
        return {
            'frames_seen': self.frames_seen,
            'frames_detected': self.frames_detected,
            'model_errors': self.model_errors,
        }
