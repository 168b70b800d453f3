"""Shared error classes for the globe services, clients, and stores."""

from __future__ import annotations


class GlobeError(RuntimeError):
    """Base exception carrying a machine-readable ``code``.

    Codes are prefixed with the HTTP status the API layer should answer with,
    e.g. ``404_COMPANY_NOT_FOUND``.
    """

    def __init__(self, message: str, code: str = "500_INTERNAL") -> None:
        super().__init__(message)
        self.code = code


class InvalidParameterError(GlobeError):
    """Raised when a caller supplies a missing or out-of-range parameter."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="400_INVALID_PARAMETER")


class UpstreamError(GlobeError):
    """Raised when a third-party API fails after retries."""

    def __init__(
        self, message: str, code: str = "502_UPSTREAM", *, status_code: int | None = None
    ) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code


class UpstreamRateLimitError(UpstreamError):
    """Raised when an upstream keeps answering HTTP 429."""

    def __init__(self, message: str = "Rate limited by upstream") -> None:
        super().__init__(message, code="429_UPSTREAM_RATE_LIMIT", status_code=429)


class UpstreamTimeoutError(UpstreamError):
    """Raised when an upstream request times out."""

    def __init__(self, message: str = "Upstream request timed out") -> None:
        super().__init__(message, code="504_UPSTREAM_TIMEOUT")


class UpstreamSchemaError(UpstreamError):
    """Raised when an upstream payload does not have the expected shape."""

    def __init__(self, message: str = "Unexpected upstream response schema") -> None:
        super().__init__(message, code="502_UPSTREAM_SCHEMA")


class DatasetError(GlobeError):
    """Raised when the static company dataset cannot be read."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="500_DATASET_UNAVAILABLE")


class CompanyNotFoundError(GlobeError):
    """Raised when a company id or name is not in the dataset."""

    def __init__(self, identifier: str) -> None:
        super().__init__(f"Company not found: {identifier}", code="404_COMPANY_NOT_FOUND")
        self.identifier = identifier


class HistoryStoreError(GlobeError):
    """Raised when the narrative history cannot be read or written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="500_HISTORY_STORE")


class ComponentUnavailableError(GlobeError):
    """Raised by a component scorer that has no data to score."""

    def __init__(self, component: str, message: str) -> None:
        super().__init__(f"{component}: {message}", code="503_COMPONENT_UNAVAILABLE")
        self.component = component


class NarrativeComputationError(GlobeError):
    """Raised when no component could be scored."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="500_NARRATIVE_COMPUTATION")


class WeightConfigurationError(GlobeError):
    """Raised when a weight table does not sum to 1.0 or is unknown."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="500_WEIGHT_CONFIGURATION")
