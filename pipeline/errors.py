from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for errors raised by the authoring pipeline."""


class InvalidTransitionError(PipelineError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move from {current} to {target}")
        self.current = current
        self.target = target


class GenerationInProgressError(PipelineError):
    """A generation is already streaming into this draft."""


class DraftBusyError(PipelineError):
    """The body is owned by a stream or an optimization pass right now."""


class OperationFailedError(PipelineError):
    """A single-shot generative call failed; the draft is unchanged."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed{detail}")
        self.operation = operation
        self.cause = cause
