from __future__ import annotations


class ConcallError(RuntimeError):
    """
    Base class for all service errors.

    Per-item errors (download/enrichment) are caught and counted by the ingestor;
    batch-level errors (feed, persistence, timeout) abort an invocation.
    """


class ConfigError(ConcallError):
    """Raised at startup when required configuration is missing or invalid."""


class ValidationError(ConcallError):
    """Bad caller input (e.g. unparseable dates, from > to)."""


class UpstreamFetchError(ConcallError):
    """Announcement feed unreachable, non-2xx, or returned an undecodable body."""


class DownloadError(ConcallError):
    """Attachment download failed (network, non-2xx status, or local write)."""


class EmptyDocumentError(DownloadError):
    """Attachment downloaded but the file on disk is zero bytes."""


class EnrichmentError(ConcallError):
    """
    Terminal AI service failure (auth, malformed request, permanent quota).

    Never retried.
    """


class RetriesExhaustedError(EnrichmentError):
    """Every attempt failed with a transient (429/500/503) error."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = int(attempts)


class PersistenceError(ConcallError):
    """Store read/write failed."""


class PipelineTimeoutError(ConcallError):
    """The ingestion invocation exceeded its deadline."""

    def __init__(self, message: str, *, deadline_s: float) -> None:
        super().__init__(message)
        self.deadline_s = float(deadline_s)
