"""
Error taxonomy for the action recognition engine.

Only ModelUnavailable for the pose model is allowed to escape to the caller;
everything else is recovered inside the component that raised it.
"""


class ActionRecognitionError(Exception):
    """Base class for engine errors."""


class NoDetection(ActionRecognitionError):
    """Pose model found no subject in the frame."""


class ModelUnavailable(ActionRecognitionError):
    """A classifier or the pose model failed to load."""

    def __init__(self, name: str, reason: str = ''):
        self.name = name
        self.reason = reason
        message = f"Model '{name}' unavailable"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class InferenceFailure(ActionRecognitionError):
    """A single classifier invocation failed at runtime."""

    def __init__(self, category: str, reason: str = ''):
        self.category = category
        self.reason = reason
        super().__init__(f"Classifier '{category}' failed: {reason}")


class EncodingFailure(ActionRecognitionError):
    """Feature tensor allocation or encoding failed."""
