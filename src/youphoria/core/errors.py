"""Error taxonomy shared by the ingestion, normalization and chat pipelines.

Each error carries an HTTP status and a ``public_message`` that is safe to
return to API callers. 5xx-class errors always expose a generic message;
the detailed message stays in the logs.

Pipeline functions that process batches return a :class:`Result` instead
of raising across their boundary so a bad record degrades to partial
success. Only the HTTP/MCP edge converts exceptions into responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

GENERIC_SERVER_MESSAGE = "An internal error occurred. Please try again later."


class YouphoriaError(Exception):
    """Base class for errors the application knows how to report."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, public_message: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self._public_message = public_message

    @property
    def public_message(self) -> str:
        if self._public_message is not None:
            return self._public_message
        if self.status_code >= 500:
            return GENERIC_SERVER_MESSAGE
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.public_message}


class ValidationError(YouphoriaError):
    """Bad input shape, size or type. User-correctable."""

    status_code = 400
    code = "validation_error"


class NormalizationError(YouphoriaError):
    """A raw record could not be mapped onto the canonical schema."""

    status_code = 422
    code = "normalization_error"


class UnknownMetricError(NormalizationError):
    """The (source, field) pair is not present in the metric registry."""

    code = "unknown_metric"

    def __init__(self, source_app: str, field_name: str) -> None:
        super().__init__(f"Unknown metric {field_name!r} for source {source_app!r}")
        self.source_app = source_app
        self.field_name = field_name


class UnitMismatchError(NormalizationError):
    """The declared unit has no converter to the metric's canonical unit."""

    code = "unit_mismatch"

    def __init__(self, metric_type: str, unit: str, canonical_unit: str) -> None:
        super().__init__(
            f"No conversion from {unit!r} to {canonical_unit!r} for metric {metric_type}"
        )
        self.metric_type = metric_type
        self.unit = unit
        self.canonical_unit = canonical_unit


class ExternalServiceError(YouphoriaError):
    """A database, storage, model or extraction call failed."""

    status_code = 502
    code = "external_service_error"


class LowConfidenceExtractionError(YouphoriaError):
    """The extraction service answered, but not confidently enough to persist."""

    status_code = 422
    code = "low_confidence_extraction"

    def __init__(self, confidence: float, threshold: float) -> None:
        super().__init__(
            f"Extraction confidence {confidence:.2f} is below the {threshold:.2f} threshold",
            public_message=(
                "We could not read health data from this file with enough confidence. "
                "Try a clearer scan or a different format."
            ),
        )
        self.confidence = confidence
        self.threshold = threshold


class NotFoundError(YouphoriaError):
    """Referenced resource is absent or not owned by the caller."""

    status_code = 404
    code = "not_found"


@dataclass
class Result(Generic[T]):
    """``{success, data|error}`` outcome of a pipeline operation."""

    success: bool
    data: T | None = None
    error: YouphoriaError | None = None

    @classmethod
    def ok(cls, data: T) -> Result[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: YouphoriaError) -> Result[T]:
        return cls(success=False, error=error)

    def to_envelope(self, serialize: Any = None) -> dict[str, Any]:
        if self.success:
            data = serialize(self.data) if serialize is not None else self.data
            return {"success": True, "data": data}
        assert self.error is not None
        envelope: dict[str, Any] = {"success": False, "error": self.error.to_dict()}
        # partial results, e.g. a reply that was generated but not saved
        if self.data is not None and serialize is not None:
            envelope["data"] = serialize(self.data)
        return envelope
