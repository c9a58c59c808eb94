"""
Action Recognition Engine
Pose-based multi-model action classification: YOLOv8-pose keypoints →
fixed-shape feature tensor → N binary classifiers in parallel →
confidence arbitration → ActionEvent publish.

Usage:
    from engines.action_recognition import (
        ActionPipeline, ActionRules, ClassifierEnsemble, FeatureWindowBuilder,
        KeypointExtractor, YoloPoseModel, load_classifiers,
    )

    rules     = ActionRules()
    extractor = KeypointExtractor(YoloPoseModel(gpu_id=0))
    ensemble  = ClassifierEnsemble(load_classifiers('models', rules.category_priority, rules), rules)
    pipeline  = ActionPipeline(extractor, FeatureWindowBuilder(rules), ensemble, rules=rules)

    pipeline.dispatcher.subscribe(lambda event: print(event.message))
    pipeline.start()
    pipeline.submit_frame(frame)
"""

from engines.action_recognition.arbitration import arbitrate
from engines.action_recognition.detector import (
    BoundingBox, Frame, KeypointExtractor, KeypointMap, YoloPoseModel,
)
from engines.action_recognition.dispatcher import ActionEvent, EventDispatcher, ScoreMap
from engines.action_recognition.ensemble import (
    ClassificationResult, ClassifierEnsemble, ClassifierSpec, load_classifiers,
)
from engines.action_recognition.errors import (
    ActionRecognitionError, EncodingFailure, InferenceFailure, ModelUnavailable, NoDetection,
)
from engines.action_recognition.features import FeatureWindowBuilder
from engines.action_recognition.pipeline import ActionPipeline, InferencePolicy, PipelineState
from engines.action_recognition.rules import ACTION_METADATA, ActionRules

__all__ = [
    'Frame', 'KeypointMap', 'BoundingBox', 'KeypointExtractor', 'YoloPoseModel',
    'FeatureWindowBuilder',
    'ClassifierSpec', 'ClassificationResult', 'ClassifierEnsemble', 'load_classifiers',
    'arbitrate',
    'ActionEvent', 'EventDispatcher', 'ScoreMap',
    'ActionPipeline', 'InferencePolicy', 'PipelineState',
    'ActionRules', 'ACTION_METADATA',
    'ActionRecognitionError', 'NoDetection', 'ModelUnavailable',
    'InferenceFailure', 'EncodingFailure',
]
