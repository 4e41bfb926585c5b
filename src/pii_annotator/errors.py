"""Exception hierarchy."""

from __future__ import annotations


class AnnotatorError(Exception):
    """Base class for pii-annotator errors."""


class LearningError(AnnotatorError):
    """Rule inference failed for a set of examples."""


class PatternStoreError(AnnotatorError):
    """The pattern/feedback store could not be reached or refused a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FeedbackNotAllowed(AnnotatorError):
    """Feedback was requested for a pattern that cannot receive it."""
