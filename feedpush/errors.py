class FeedPushError(Exception):
    """Base class for all pipeline errors"""


class ConfigError(FeedPushError):
    """Malformed feed catalog, keyword file or settings. Aborts the run."""


class FetchError(FeedPushError):
    """A single feed could not be fetched or parsed."""

    def __init__(self, feed_name: str, cause: Exception):
        super().__init__(f"{feed_name}: {cause}")
        self.feed_name = feed_name
        self.cause = cause


class StoreError(FeedPushError):
    """Dedup state could not be loaded or saved."""


class SemanticFilterError(FeedPushError):
    """The model call failed or returned something unusable."""


class DeliveryError(FeedPushError):
    """The notification sink rejected a batch or timed out."""
