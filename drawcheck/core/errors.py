"""
Error taxonomy for the drawing review pipeline.

Every failure is terminal at page (scan) or document (ingestion) granularity;
nothing in the core retries on its own.
"""
from __future__ import annotations


class DrawcheckError(Exception):
    """Base class for all recoverable pipeline errors."""


class IngestionError(DrawcheckError):
    """An uploaded document could not be turned into pages."""

    def __init__(self, document_name: str, message: str) -> None:
        super().__init__(f"{document_name}: {message}")
        self.document_name = document_name
        self.message = message


class ScanError(DrawcheckError):
    """The detector call failed for one page."""

    def __init__(self, page_id: str, message: str) -> None:
        super().__init__(message)
        self.page_id = page_id
        self.message = message


class ScanInProgressError(ScanError):
    """A scan was requested for a page that is already being scanned."""


class ExportPreconditionError(DrawcheckError):
    """Nothing exportable: the page is not completed or has no defects."""


class PageNotFoundError(DrawcheckError, KeyError):
    def __init__(self, page_id: str) -> None:
        super().__init__(page_id)
        self.page_id = page_id

    def __str__(self) -> str:
        return f"Unknown page: {self.page_id}"


class BatchInProgressError(DrawcheckError):
    """A batch scan was started while another one is still running."""
