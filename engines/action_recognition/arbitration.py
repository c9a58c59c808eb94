"""
Arbitration — picks at most one winning action from the ensemble's scores.

Categories are walked in priority order. A category is a candidate when its
score meets its threshold; a later candidate replaces the current winner only
with a strictly higher score, so ties go to the earlier category.
Pure functions: no state, no I/O.
"""

import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from engines.action_recognition.ensemble import ClassificationResult

Score = Union[float, ClassificationResult]


def _confidence(score: Score) -> float:
    if isinstance(score, ClassificationResult):
        return score.confidence
    return float(score)


def evaluation_order(categories, priority: Sequence[str]) -> List[str]:
    """
    Categories in the order they are evaluated.

    Listed categories follow `priority`; unlisted ones come after, sorted
    by label so the order never depends on mapping iteration.
    """
    present = set(categories)
    ordered = [c for c in priority if c in present]
    listed = set(ordered)
    ordered.extend(sorted(c for c in present if c not in listed))
    return ordered


def arbitrate(scores: Mapping[str, Score], threshold: float,
              priority: Sequence[str] = (),
              thresholds: Optional[Dict[str, float]] = None) -> Optional[Tuple[str, float]]:
    """
    Select the winning category.

    Args:
        scores: category → confidence (float or ClassificationResult)
        threshold: detection threshold applied to every category
        priority: category evaluation order, earliest wins ties
        thresholds: optional per-category overrides of `threshold`

    Returns:
        (category, confidence) of the winner, or None for normal activity
    """
    thresholds = thresholds or {}
    winner: Optional[Tuple[str, float]] = None

    for category in evaluation_order(scores.keys(), priority):
        confidence = _confidence(scores[category])
        if math.isnan(confidence):
            continue
        if confidence < thresholds.get(category, threshold):
            continue
        if winner is None or confidence > winner[1]:
            winner = (category, confidence)

    return winner
