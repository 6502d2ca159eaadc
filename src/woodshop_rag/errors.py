"""Pipeline error taxonomy.

Every failure that reaches the caller is a `PipelineError` subclass so the API
layer can render one structured error shape regardless of which stage failed.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base class for errors surfaced to callers."""

    code = "pipeline_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "stage": self.stage,
                "retryable": self.retryable,
            }
        }


class InvalidRequestError(PipelineError):
    """Malformed request body, missing messages or an empty query."""

    code = "validation_error"
    status_code = 400


class ConfigurationError(PipelineError):
    """A credential required by a mandatory stage is missing."""

    code = "configuration_error"
    status_code = 500


class StageTimeoutError(PipelineError):
    code = "stage_timeout"
    status_code = 504
    retryable = True


class StageTransientError(PipelineError):
    code = "stage_failed"
    status_code = 502


class StreamingError(PipelineError):
    """Failure after incremental delivery has started."""

    code = "streaming_error"
    status_code = 500
