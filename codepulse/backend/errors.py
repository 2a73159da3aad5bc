"""Exceptions raised at the ingestion and query seams."""


class CodePulseError(Exception):
    """Base exception for CodePulse failures."""


class UnknownProviderError(CodePulseError):
    """Raised when a webhook names a provider we do not parse."""


class MalformedEnvelopeError(CodePulseError):
    """Raised when a payload lacks the identity needed to apply it at all."""


class InvalidPeriodError(CodePulseError, ValueError):
    """Raised when a period string is not one of the accepted spellings."""
