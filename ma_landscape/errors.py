"""
Pipeline error taxonomy.

Fatal errors derive from PipelineError and stop a stage; the CLI turns them
into a non-zero exit status. Item-level errors (one search, one document)
derive from ItemError and are caught at the task boundary.
"""

from typing import List, Optional


class PipelineError(Exception):
    """Base exception for fatal pipeline errors."""
    pass


class MissingInputError(PipelineError):
    """Raised when a required input (archive location, file) is absent."""
    pass


class DownloadError(PipelineError):
    """Raised when a load-bearing input cannot be fetched."""
    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class TableDetectionError(PipelineError):
    """Raised when no archive entry carries the required landscape columns."""
    def __init__(self, message: str, candidates: Optional[List[str]] = None):
        super().__init__(message)
        self.candidates = candidates or []


class HeaderResolutionError(PipelineError):
    """Raised when a load-bearing header (year, contract, plan) has no alias match."""
    def __init__(self, missing_fields: List[str], headers: List[str]):
        self.missing_fields = missing_fields
        self.headers = headers
        super().__init__(
            f"Could not resolve critical headers {missing_fields}; "
            f"available headers: {headers}"
        )


class GeographySourceError(PipelineError):
    """Raised when a gazetteer file is missing or malformed."""
    pass


class ItemError(Exception):
    """Base exception for per-plan failures that never abort a batch."""
    pass


class SearchError(ItemError):
    """Raised when the search provider returns an error response."""
    pass


class DocumentFetchError(ItemError):
    """Raised when a candidate document cannot be retrieved or is rejected."""
    pass


class EmptyDocumentError(DocumentFetchError):
    """Raised when a document payload is too small to be a real PDF."""
    pass
