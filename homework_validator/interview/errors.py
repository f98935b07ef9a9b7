class InterviewError(Exception):
    """Base class for every error raised by the interview orchestrator."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(InterviewError):
    """Bad or insufficient input; the user must supply something different."""


class InvalidTopicsError(ValidationError):
    """Document analysis produced no usable topics."""


class GenerationError(InterviewError):
    """External generation service failed or timed out. Retryable."""


class TransientNetworkError(GenerationError):
    """Network-level failure talking to a provider; surfaced like GenerationError."""


class InvariantViolation(InterviewError):
    """Programmer error, e.g. advancing with no active topic."""
