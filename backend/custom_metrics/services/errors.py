"""Custom metrics provider exceptions."""


class MetricsProviderError(Exception):
    """Base exception for metric query failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ResolutionError(MetricsProviderError):
    """The resource type is unknown to the resource mapper."""


class ListError(MetricsProviderError):
    """Listing the matching resource instances failed."""


class AggregationError(MetricsProviderError):
    """The matched instance collection cannot be aggregated."""


class SelectorError(MetricsProviderError):
    """The label selector could not be parsed."""
