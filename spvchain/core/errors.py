from __future__ import annotations


class ValidationError(Exception):
    """A header batch failed verification. Fatal to the whole call."""

    def __init__(self, message: str, index: int | None = None):
        if index is not None:
            message = f"{message} at index {index}"
        super().__init__(message)
        self.index = index


class MalformedHeader(ValidationError):
    pass


class MalformedMantissa(ValidationError):
    pass


class ParentHashMismatch(ValidationError):
    pass


class ThresholdMismatch(ValidationError):
    pass


class ThresholdOutOfRange(ValidationError):
    pass


class ProofOfWorkFailure(ValidationError):
    pass


class RetargetMismatch(ValidationError):
    pass


class PeriodAnchorMismatch(ValidationError):
    pass


class UnsupportedSpan(ValidationError):
    pass
