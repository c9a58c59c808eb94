"""
Action Rules — configurable thresholds, tensor contract and metadata for
action recognition. All tunable parameters live here for easy adjustment.

IMPORTANT: The tensor shape must match the input contract the classifiers
were trained on. Changing it without retraining makes every model fail its
shape check and drop out of the ensemble.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple


# Action metadata: display names and severity
ACTION_METADATA: Dict[str, dict] = {
    'abuse':       {'display_name': 'Abuse',       'severity': 'high'},
    'arrest':      {'display_name': 'Arrest',      'severity': 'medium'},
    'shoplifting': {'display_name': 'Shoplifting', 'severity': 'medium'},
    'vandalism':   {'display_name': 'Vandalism',   'severity': 'high'},
}

# Evaluation order for arbitration; ties go to the earlier entry
DEFAULT_PRIORITY: List[str] = ['abuse', 'arrest', 'shoplifting', 'vandalism']


def display_name(category: str) -> str:
    """Human-readable name for a category label."""
    meta = ACTION_METADATA.get(category)
    if meta:
        return meta['display_name']
    return category.replace('_', ' ').title()


def severity(category: str) -> str:
    return ACTION_METADATA.get(category, {}).get('severity', 'low')


@dataclass
class ActionRules:
    """
    Process-wide settings for the classification engine.
    Read-only after startup; the pipeline never mutates it.
    """

    # ── Arbitration ──
    detection_threshold: float = 0.2      # minimum "abnormal" probability to be a candidate
    category_priority: List[str] = field(default_factory=lambda: list(DEFAULT_PRIORITY))

    # ── Feature tensor ──
    tensor_shape: Tuple[int, int, int] = (60, 3, 18)   # window × channels × joints
    missing_value: float = 0.0            # value for any cell without pose data
    temporal_window: bool = False         # rolling buffer; filled in encode() call order

    # ── Classifier output ──
    abnormal_label: str = 'abnormal'      # probability key read from each model

    def __post_init__(self):
        if not 0.0 <= self.detection_threshold <= 1.0:
            raise ValueError(
                f"detection_threshold must be in [0, 1], got {self.detection_threshold}"
            )

        shape = tuple(self.tensor_shape)
        if len(shape) != 3 or any(not isinstance(d, int) or d <= 0 for d in shape):
            raise ValueError(f"tensor_shape must be three positive ints, got {self.tensor_shape}")
        if shape[1] < 2:
            raise ValueError("tensor_shape needs at least 2 channels (x, y)")
        self.tensor_shape = shape

        if len(set(self.category_priority)) != len(self.category_priority):
            raise ValueError(f"Duplicate category in priority order: {self.category_priority}")

    @property
    def window(self) -> int:
        return self.tensor_shape[0]

    @property
    def channels(self) -> int:
        return self.tensor_shape[1]

    @property
    def joint_count(self) -> int:
        return self.tensor_shape[2]
