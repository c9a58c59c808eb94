"""
Configuration Management for MultiRec
Loads environment variables and provides configuration settings
"""

import os
from dotenv import load_dotenv

from engines.action_recognition.rules import ActionRules, DEFAULT_PRIORITY

# Load environment variables
load_dotenv()


def _bool(value) -> bool:
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def _list(value):
    return [item.strip() for item in str(value).split(',') if item.strip()]


class Config:
    """Application configuration"""

    # Arbitration
    DETECTION_THRESHOLD = float(os.getenv('DETECTION_THRESHOLD', 0.2))
    CATEGORY_PRIORITY = _list(os.getenv('CATEGORY_PRIORITY', ','.join(DEFAULT_PRIORITY)))

    # Feature tensor (window, channels, joints)
    TENSOR_SHAPE = tuple(int(d) for d in _list(os.getenv('TENSOR_SHAPE', '60,3,18')))
    TEMPORAL_WINDOW = _bool(os.getenv('TEMPORAL_WINDOW', 'false'))

    # Models
    MODELS_DIR = os.getenv('MODELS_DIR', 'models')
    POSE_MODEL = os.getenv('POSE_MODEL', 'yolov8s-pose.pt')
    POSE_CONF_THRESHOLD = float(os.getenv('POSE_CONF_THRESHOLD', 0.5))
    MIN_KEYPOINT_CONFIDENCE = float(os.getenv('MIN_KEYPOINT_CONFIDENCE', 0.3))
    GPU_ID = int(os.getenv('GPU_ID', 0))
    USE_FP16 = _bool(os.getenv('USE_FP16', 'true'))

    # Inference scheduling
    INFERENCE_POLICY = os.getenv('INFERENCE_POLICY', 'supersede')
    INFERENCE_WORKERS = int(os.getenv('INFERENCE_WORKERS', 4))

    # Capture
    CAMERA_SOURCE = os.getenv('CAMERA_SOURCE', '0')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', 'logs/multirec.log')

    @classmethod
    def build_rules(cls) -> ActionRules:
        """Engine settings from the current configuration."""
        return ActionRules(
            detection_threshold=cls.DETECTION_THRESHOLD,
            category_priority=list(cls.CATEGORY_PRIORITY),
            tensor_shape=tuple(cls.TENSOR_SHAPE),
            temporal_window=cls.TEMPORAL_WINDOW,
        )
