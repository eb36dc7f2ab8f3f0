"""
Error taxonomy for the content pipeline.

    ValidationError    — bad submission, job never created
    NotFoundError      — job id does not resolve for this owner
    AuthorizationError — lookup without an owner; reported as not-found
    PersistenceError   — job store read/write failed
    GenerationError    — a remote generator failed; recorded on the job
"""

from typing import Optional


class ContentGeneratorError(Exception):
    """Base class for every error raised by the pipeline."""


class ValidationError(ContentGeneratorError):
    pass


class NotFoundError(ContentGeneratorError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class AuthorizationError(NotFoundError):
    """Subclass of NotFoundError so callers can never tell the two apart."""


class PersistenceError(ContentGeneratorError):
    pass


class GenerationError(ContentGeneratorError):
    """
    A generation stage failed.

    Attributes:
        stage:       "script", "image", "audio" or "video".
        kind:        auth | rate_limit | validation | upstream | network |
                     timeout | malformed | missing_input | unexpected
        status_code: Provider HTTP status, if any.
        cause:       The underlying exception, if any.
    """

    def __init__(
        self,
        stage: str,
        message: str,
        kind: str = "upstream",
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.kind = kind
        self.status_code = status_code
        self.cause = cause

    def __repr__(self) -> str:
        return f"GenerationError(stage={self.stage!r}, kind={self.kind!r}, message={str(self)!r})"
