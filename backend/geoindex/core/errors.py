from __future__ import annotations


class IndexingError(RuntimeError):
    """Base class for failures while building a search index."""


class UnsupportedFeatureSourceError(IndexingError):
    """The feature type cannot be indexed (e.g. a WFS source)."""


class FeatureSourceError(IndexingError):
    """Reading from the feature source failed."""


class ExtractionTimeoutError(IndexingError):
    """Consuming the feature source took longer than the configured deadline."""


class TaskInterruptedError(IndexingError):
    """A running task was asked to stop."""


class SolrError(IndexingError):
    """Solr answered with an error."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class SolrConnectionError(SolrError):
    """Solr could not be reached."""


class SchedulerError(RuntimeError):
    pass


class TaskConflictError(SchedulerError):
    """A scheduled task already targets the same search index."""


class TaskValidationError(ValueError):
    """Invalid job data or cron expression."""


class JobExecutionError(RuntimeError):
    """A task run failed; raised to the scheduler so the run is marked failed."""
