from __future__ import annotations


class PreflightInputError(Exception):
    """The request lacks the minimum evidence or is not a JSON object."""


class EvidenceDecodeError(Exception):
    """An uploaded document could not be decoded or parsed."""


class ModelCallError(Exception):
    """Transport-level failure talking to the hosted model."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class RenderError(Exception):
    """The report document could not be produced."""


class PreflightStageError(Exception):
    """Unexpected failure, tagged with the pipeline stage it happened in."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} stage failed: {cause}")
        self.stage = stage
        self.cause = cause
