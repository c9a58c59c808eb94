"""
Joint vocabulary — the fixed, closed set of 18 body joints the engine knows.

Every joint owns one slot in the feature tensor regardless of whether it was
detected, so encoding never depends on map iteration order.
"""

from typing import Dict, Tuple

# OpenPose-18 order
JOINT_NAMES: Tuple[str, ...] = (
    'nose', 'neck',
    'right_shoulder', 'right_elbow', 'right_wrist',
    'left_shoulder', 'left_elbow', 'left_wrist',
    'right_hip', 'right_knee', 'right_ankle',
    'left_hip', 'left_knee', 'left_ankle',
    'right_eye', 'left_eye',
    'right_ear', 'left_ear',
)

JOINT_COUNT = len(JOINT_NAMES)

JOINT_INDEX: Dict[str, int] = {name: i for i, name in enumerate(JOINT_NAMES)}

# COCO 17-keypoint indices (ultralytics pose output order)
COCO_KEYPOINTS: Tuple[str, ...] = (
    'nose', 'left_eye', 'right_eye', 'left_ear', 'right_ear',
    'left_shoulder', 'right_shoulder', 'left_elbow', 'right_elbow',
    'left_wrist', 'right_wrist', 'left_hip', 'right_hip',
    'left_knee', 'right_knee', 'left_ankle', 'right_ankle',
)

# Limb pairs for skeleton overlays
SKELETON_EDGES: Tuple[Tuple[str, str], ...] = (
    ('nose', 'neck'),
    ('neck', 'right_shoulder'), ('right_shoulder', 'right_elbow'), ('right_elbow', 'right_wrist'),
    ('neck', 'left_shoulder'), ('left_shoulder', 'left_elbow'), ('left_elbow', 'left_wrist'),
    ('neck', 'right_hip'), ('right_hip', 'right_knee'), ('right_knee', 'right_ankle'),
    ('neck', 'left_hip'), ('left_hip', 'left_knee'), ('left_knee', 'left_ankle'),
    ('nose', 'right_eye'), ('right_eye', 'right_ear'),
    ('nose', 'left_eye'), ('left_eye', 'left_ear'),
)


def is_joint(name: str) -> bool:
    return name in JOINT_INDEX
