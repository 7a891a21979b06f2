"""Exceptions raised while preparing a submission."""


class SubmissionError(Exception):
    """Base class for submission errors."""


class BuildFailure(SubmissionError):
    """The payload could not be built; retrying will not help."""


class InvalidRecord(SubmissionError, ValueError):
    """A record holds values that cannot be persisted as a scalar bundle."""
