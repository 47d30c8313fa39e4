"""
Exception taxonomy for the data quality monitoring engine.

Definition-time errors (NotFoundError, ShapeMismatchError,
NonDeterministicMetricError) are raised straight to the caller. Runtime errors
(ComputeError, DataUnavailableError, DispatchError) are raised by the
evaluator and channels, then caught, logged and recorded by the scheduler and
alert engine so that one failing binding or rule never aborts its siblings.
"""

from typing import Iterable, Optional


class QualityKitError(Exception):
    """Base class for all qualitykit errors."""


class NotFoundError(QualityKitError):
    """Raised when a definition, binding, schedule or alert rule does not exist."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} '{name}' does not exist")


class ShapeMismatchError(QualityKitError):
    """Raised when an entity's columns do not satisfy a metric's declared input shape."""


class NonDeterministicMetricError(QualityKitError):
    """Raised when a metric computation depends on wall-clock time or external state."""

    def __init__(self, metric_name: str, references: Iterable[str]):
        self.metric_name = metric_name
        self.references = sorted(set(references))
        super().__init__(
            f"Metric '{metric_name}' is not deterministic; it references: "
            f"{', '.join(self.references)}"
        )


class ComputeError(QualityKitError):
    """Raised when a metric computation fails against real data."""

    def __init__(self, metric_name: str, entity: str, reason: str):
        self.metric_name = metric_name
        self.entity = entity
        self.reason = reason
        super().__init__(f"Metric '{metric_name}' failed on '{entity}': {reason}")


class DataUnavailableError(QualityKitError):
    """Raised when a target entity is missing or inaccessible."""

    def __init__(self, entity: str, reason: Optional[str] = None):
        self.entity = entity
        self.reason = reason
        message = f"Entity '{entity}' is unavailable"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class DispatchError(QualityKitError):
    """Raised when a notification could not be delivered."""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"Dispatch via {channel} failed: {reason}")


class EvaluationCancelled(QualityKitError):
    """Raised when an in-flight evaluation is cancelled before its result is written."""

    def __init__(self, binding_id: str):
        self.binding_id = binding_id
        super().__init__(f"Evaluation of '{binding_id}' was cancelled")
