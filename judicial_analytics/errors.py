"""Exception taxonomy for the analytics engine."""
from typing import Optional


class AnalyticsError(Exception):
    """Base exception for analytics errors."""
    pass


class InsufficientSampleError(AnalyticsError):
    """Case volume below a threshold. Surfaces as a withheld result, never retried."""

    def __init__(self, reason: str, reason_code: str):
        super().__init__(reason)
        self.reason = reason
        self.reason_code = reason_code


class GatewayUnavailableError(AnalyticsError):
    """Case data could not be fetched."""
    pass


class ProviderError(AnalyticsError):
    """Narrative provider call failed."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """Narrative provider did not answer within its timeout."""
    pass


class NarrativeRejectedError(ProviderError):
    """Narrative failed citation or figure validation."""
    pass


class CachePersistenceError(AnalyticsError):
    """A cache tier write failed. Logged, never fatal."""
    pass


class MalformedRecordError(AnalyticsError):
    """A single case record failed validation."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class JudgeNotFoundError(AnalyticsError):
    """The gateway has no judge with this id."""
    pass


class GenerationCancelledError(AnalyticsError):
    """Generation stopped because its batch was cancelled."""
    pass
