"""Exception hierarchy shared by the job service, pipeline and surfaces.

Pre-flight errors (NotFound, UnknownCreator, InvalidRequest,
InvalidTransition) are raised synchronously to callers. StageError and its
subclasses never leave a background pipeline run: the orchestrator converts
them into a failed job.
"""

from typing import Optional


class ReelgenError(Exception):
    """Base class for all reelgen errors."""


class NotFound(ReelgenError):
    """Referenced job (or other record) does not exist."""


class UnknownCreator(ReelgenError):
    """Caller is not a known creator."""


class InvalidRequest(ReelgenError):
    """Request parameters failed validation."""


class InvalidTransition(ReelgenError):
    """Requested lifecycle change is not allowed from the job's state."""


class ArtifactOverwrite(ReelgenError):
    """Attempt to reassign an artifact field that is already set."""


class StageError(ReelgenError):
    """A generation stage failed without persisting partial output.

    Attributes:
        stage: Pipeline status name of the failing stage (e.g. "imaging").
        reason: Human-readable failure reason, stored as the job error.
        retriable: Whether a bounded stage retry may re-run the stage.
    """

    def __init__(self, stage: str, reason: str, *, retriable: bool = False):
        super().__init__(f"{stage} failed: {reason}")
        self.stage = stage
        self.reason = reason
        self.retriable = retriable


class RenderError(StageError):
    """Render farm fatal error, or download/upload of the output failed."""

    def __init__(self, reason: str, *, errors: Optional[list[str]] = None, retriable: bool = False):
        super().__init__("rendering", reason, retriable=retriable)
        self.errors = errors or []


class RenderTimeout(RenderError):
    """Distributed render did not finish within the poll limit."""


class PipelineCancelled(ReelgenError):
    """Raised inside a run when the creator has requested cancellation."""
