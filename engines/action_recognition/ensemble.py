"""
Classifier Ensemble — N independent binary classifiers, one per action
category, scored against the same feature tensor in parallel.

Key design: the set of classifiers is a homogeneous list of ClassifierSpec
entries fixed at startup. A classifier that failed to load is simply absent;
a classifier that fails at runtime is omitted from that cycle's scores.
"""

import logging
import math
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from engines.action_recognition.errors import InferenceFailure, ModelUnavailable
from engines.action_recognition.rules import ActionRules

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassifierSpec:
    """One loaded classifier and the category it scores."""
    category: str
    model: object                               # anything with predict(tensor) -> {label: prob}
    threshold: Optional[float] = None           # overrides the global detection threshold
    input_shape: Optional[Tuple[int, ...]] = None

    def expected_shape(self) -> Optional[Tuple[int, ...]]:
        if self.input_shape is not None:
            return tuple(self.input_shape)
        shape = getattr(self.model, 'input_shape', None)
        return tuple(shape) if shape is not None else None


@dataclass(frozen=True)
class ClassificationResult:
    """Probability of abnormal behaviour for one category in one cycle."""
    category: str
    confidence: float

    def to_dict(self) -> dict:
        return {
            'category': self.category,
            'confidence': round(self.confidence, 4),
        }


class ClassifierEnsemble:
    """
    Scores a FeatureTensor with every loaded classifier concurrently.

    Classifier handles are read-only after construction and are invoked from
    the worker pool without further locking.
    """

    def __init__(self, specs: Iterable[ClassifierSpec],
                 rules: Optional[ActionRules] = None,
                 max_workers: Optional[int] = None):
        self.rules = rules or ActionRules()
        self.specs: Tuple[ClassifierSpec, ...] = tuple(specs)

        categories = [s.category for s in self.specs]
        if len(set(categories)) != len(categories):
            raise ValueError(f"Duplicate classifier category: {categories}")

        workers = max_workers or max(1, len(self.specs))
        self._executor = ThreadPoolExecutor(max_workers=workers,
                                            thread_name_prefix='classifier')
        self.failures: Dict[str, int] = {c: 0 for c in categories}
        self._failures_lock = threading.Lock()

    @property
    def categories(self) -> List[str]:
        return [s.category for s in self.specs]

    def thresholds(self) -> Dict[str, float]:
        """Per-category thresholds for classifiers that carry their own."""
        return {s.category: s.threshold for s in self.specs if s.threshold is not None}

    def score_all(self, tensor: np.ndarray) -> Dict[str, ClassificationResult]:
        """
        Run every classifier on the same tensor.

        Returns:
            category → ClassificationResult, in classifier order. Categories
            whose classifier failed this cycle are left out.
        """
        futures = [
            (spec, self._executor.submit(self._score, spec, tensor))
            for spec in self.specs
        ]

        results: Dict[str, ClassificationResult] = {}
        for spec, future in futures:
            try:
                results[spec.category] = future.result()
            except InferenceFailure as e:
                self._record_failure(spec.category)
                logger.warning(f"{e} — score omitted this cycle")
            except Exception as e:
                self._record_failure(spec.category)
                logger.error(f"Classifier '{spec.category}' raised: {e}", exc_info=True)
            else:
                logger.debug(
                    f"{spec.category} model prediction made. "
                    f"Confidence: {results[spec.category].confidence:.3f}"
                )
        return results

    def _record_failure(self, category: str) -> None:
        with self._failures_lock:
            self.failures[category] += 1

    def _score(self, spec: ClassifierSpec, tensor: np.ndarray) -> ClassificationResult:
        expected = spec.expected_shape()
        if expected is not None and tuple(tensor.shape) != expected:
            raise InferenceFailure(
                spec.category,
                f"input shape {tuple(tensor.shape)} != expected {expected}",
            )

        try:
            probabilities = spec.model.predict(tensor)
        except Exception as e:
            raise InferenceFailure(spec.category, str(e)) from e

        label = self.rules.abnormal_label
        if label not in probabilities:
            raise InferenceFailure(spec.category, f"no '{label}' probability in output")

        confidence = float(probabilities[label])
        if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
            raise InferenceFailure(spec.category, f"confidence out of range: {confidence}")

        return ClassificationResult(category=spec.category, confidence=confidence)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _failure_counts(self) -> Dict[str, int]:
        with self._failures_lock:
            return dict(self.failures)

    def get_stats(self) -> dict:
        return {
            'categories': self.categories,
            'thresholds': self.thresholds(),
            'failures': self._failure_counts(),
        }


def load_classifier(path: str, category: str,
                    rules: Optional[ActionRules] = None,
                    device: Optional[str] = None) -> ClassifierSpec:
    """
    Load one `<category>.pt` checkpoint.

    Checkpoint keys: model_state_dict (required), input_shape, hidden_dim,
    num_layers, class_names, threshold (optional).

    Raises:
        ModelUnavailable: the file is missing or cannot be loaded
    """
    rules = rules or ActionRules()
    if not os.path.exists(path):
        raise ModelUnavailable(category, f"not found at {path}")

    try:
        import torch
        from engines.action_recognition.action_model import (
            BINARY_CLASSES, PoseActionNet, TorchActionClassifier,
        )

        if device is None:
            device = 'cuda' if torch.cuda.is_available() else 'cpu'
        checkpoint = torch.load(path, map_location=device)

        input_shape = tuple(checkpoint.get('input_shape', rules.tensor_shape))
        model = PoseActionNet(
            input_shape=input_shape,
            hidden_dim=checkpoint.get('hidden_dim', 64),
            num_layers=checkpoint.get('num_layers', 1),
            dropout=0.0,  # No dropout at inference
        )
        model.load_state_dict(checkpoint['model_state_dict'])

        classifier = TorchActionClassifier(
            model, device=device,
            class_names=checkpoint.get('class_names', BINARY_CLASSES),
        )
    except Exception as e:
        raise ModelUnavailable(category, str(e)) from e

    threshold = checkpoint.get('threshold')
    logger.info(f"Classifier '{category}' loaded from {path} (device: {device})")
    return ClassifierSpec(
        category=category,
        model=classifier,
        threshold=float(threshold) if threshold is not None else None,
        input_shape=input_shape,
    )


def load_classifiers(models_dir: str, categories: Iterable[str],
                     rules: Optional[ActionRules] = None,
                     device: Optional[str] = None) -> List[ClassifierSpec]:
    """
    Load a classifier per category from `models_dir/<category>.pt`.
    Categories whose model cannot be loaded are logged and left out.
    """
    specs = []
    for category in categories:
        path = os.path.join(models_dir, f'{category}.pt')
        try:
            specs.append(load_classifier(path, category, rules, device))
        except ModelUnavailable as e:
            logger.error(f"{e} — '{category}' excluded from the ensemble")

    if not specs:
        logger.warning(f"No classifiers loaded from {models_dir}")
    return specs
