"""Exception hierarchy for the reconciliation pipeline.

Each exception carries a machine-readable code so batch failures can be
recorded on the ledger and reported without parsing messages.
"""


class PipelineError(Exception):
    """Base exception for batch-level pipeline failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class FeedError(PipelineError):
    """The feed could not be opened, downloaded, or read."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("FEED_UNREADABLE", message, details)


class StagingError(PipelineError):
    """Writing normalized rows to the staging table failed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("STAGING_FAILED", message, details)


class ReconciliationError(PipelineError):
    """Diffing staging against the authoritative store failed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("RECONCILIATION_FAILED", message, details)


class AggregationError(PipelineError):
    """Rebuilding owner portfolios or market analytics failed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("AGGREGATION_FAILED", message, details)


class BatchStateError(PipelineError):
    """An import batch was asked to make an illegal status transition."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("BATCH_STATE_INVALID", message, details)
