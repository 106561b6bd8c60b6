"""Exception types raised by the import pipeline and review workflow."""

from __future__ import annotations


class MpesaReconcileError(Exception):
    """Base class for all package errors."""


class ParseError(MpesaReconcileError):
    """A single input segment could not be turned into a candidate.

    Recovered locally by the pipeline: the segment is dropped, counted and
    reported, and the rest of the batch carries on.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ValidationError(MpesaReconcileError):
    """A user-visible problem with the input or a requested action."""


class NothingToImportError(ValidationError):
    """No importable transactions were found in the input.

    Attributes:
        parsed: Number of segments that parsed successfully.
        failed: Number of segments that could not be parsed.
    """

    def __init__(self, message: str, *, parsed: int = 0, failed: int = 0) -> None:
        super().__init__(message)
        self.parsed = parsed
        self.failed = failed


class InvalidTransitionError(ValidationError):
    """A review action was attempted on a row that is no longer pending."""


class CommitError(MpesaReconcileError):
    """The ledger store rejected the batch. Nothing was written."""


class MatcherContractError(MpesaReconcileError):
    """A matcher returned a result list that does not line up with its input."""
