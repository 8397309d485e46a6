"""
Custom Exceptions for Exam Question Extraction.

This module defines a hierarchy of exceptions for precise error handling
in the page-by-page question extraction pipeline.

Exception Hierarchy:
    ExtractionError (base)
    ├── ConfigurationError
    │   └── NoCredentialsError
    ├── PDFError
    │   ├── PDFNotFoundError
    │   ├── PDFCorruptedError
    │   └── PageRenderError
    ├── APIError
    │   ├── APIConnectionError
    │   └── APIRateLimitError
    ├── CredentialsExhaustedError
    ├── PageExtractionError
    └── StorageError
        └── NothingToSaveError

Page-level failures are caught by the pipeline and reported in the result;
only configuration errors abort a run.

Usage:
    from exam_extractor.exceptions import (
        ExtractionError,
        CredentialsExhaustedError,
        NothingToSaveError,
    )

    try:
        store.save_questions(questions, course_id="c1", year=2023)
    except NothingToSaveError:
        print("No valid questions in this batch")
"""

from __future__ import annotations

from typing import Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class ExtractionError(Exception):
    """
    Base exception for all extraction-related errors.

    Attributes:
        message: Human-readable error description
        details: Additional technical details (optional)
    """

    def __init__(
        self,
        message: str = "An extraction error occurred",
        details: Optional[str] = None,
    ):
        self.message = message
        self.details = details

        full_message = message
        if details:
            full_message = f"{message} | Details: {details}"

        super().__init__(full_message)


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(ExtractionError):
    """Raised when the extractor cannot be set up."""

    pass


class NoCredentialsError(ConfigurationError):
    """
    Raised when no usable API credential is configured.

    Set EXAM_EXTRACTOR_API_KEYS (comma separated) or GEMINI_API_KEY.
    """

    def __init__(self, message: str = "No valid API credentials configured"):
        super().__init__(message)


# =============================================================================
# PDF ERRORS
# =============================================================================


class PDFError(ExtractionError):
    """Base class for PDF-related errors."""

    def __init__(
        self,
        message: str = "PDF error",
        path: Optional[str] = None,
        details: Optional[str] = None,
    ):
        self.path = path
        if path:
            message = f"{message} [{path}]"
        super().__init__(message, details)


class PDFNotFoundError(PDFError):
    """Raised when the PDF file cannot be found."""

    def __init__(self, path: str):
        super().__init__(
            message=f"PDF file not found: {path}",
            path=path,
        )


class PDFCorruptedError(PDFError):
    """
    Raised when the PDF file is corrupted or cannot be opened.

    Attributes:
        path: Path to the corrupted file
        original_error: The underlying error from the PDF library
    """

    def __init__(
        self,
        path: str,
        original_error: Optional[Exception] = None,
    ):
        self.original_error = original_error
        details = str(original_error) if original_error else None
        super().__init__(
            message=f"PDF file is corrupted or unreadable: {path}",
            path=path,
            details=details,
        )


class PageRenderError(PDFError):
    """
    Raised when a PDF page cannot be rendered to an image.

    Attributes:
        page_number: The page that failed to render (1-indexed)
    """

    def __init__(
        self,
        page_number: int,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.page_number = page_number
        self.original_error = original_error
        details = str(original_error) if original_error else None
        super().__init__(
            message=f"Failed to render page {page_number}",
            path=path,
            details=details,
        )


# =============================================================================
# API ERRORS
# =============================================================================


class APIError(ExtractionError):
    """
    Base class for model API errors.

    Wraps SDK-specific errors for consistent error handling.

    Attributes:
        original_error: The underlying API exception
        status_code: HTTP status code if available
    """

    def __init__(
        self,
        message: str = "API error",
        original_error: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        self.original_error = original_error
        self.status_code = status_code

        details = None
        if original_error:
            details = str(original_error)
        if status_code:
            message = f"{message} (HTTP {status_code})"

        super().__init__(message, details)


class APIConnectionError(APIError):
    """Raised when the API cannot be reached (network, DNS, timeouts)."""

    def __init__(
        self,
        message: str = "Cannot connect to model API",
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, original_error)


class APIRateLimitError(APIError):
    """
    Raised when a credential hits its rate limit or quota.

    Attributes:
        retry_after: Suggested wait time in seconds (if provided by API)
    """

    def __init__(
        self,
        retry_after: Optional[float] = None,
        original_error: Optional[Exception] = None,
    ):
        self.retry_after = retry_after
        message = "Model API rate limit exceeded"
        if retry_after:
            message = f"{message} (retry after {retry_after}s)"
        super().__init__(message, original_error, status_code=429)


class CredentialsExhaustedError(ExtractionError):
    """
    Raised when every credential was tried for one call and all were rate-limited.

    Kept outside the APIError branch so callers can tell it apart from a
    plain call failure.

    Attributes:
        attempts: Number of attempts made (equals the pool size)
        last_error: The last rate-limit error seen
    """

    def __init__(
        self,
        attempts: int,
        operation: Optional[str] = None,
        last_error: Optional[Exception] = None,
    ):
        self.attempts = attempts
        self.operation = operation
        self.last_error = last_error
        self.original_error = last_error

        message = f"All {attempts} API credentials exhausted"
        if operation:
            message = f"{message} for {operation}"
        details = str(last_error) if last_error else None
        super().__init__(message, details)


# =============================================================================
# PAGE ERRORS
# =============================================================================


class PageExtractionError(ExtractionError):
    """
    Raised when a single page fails in one of the passes.

    The pipeline records these per page and moves on.

    Attributes:
        page_number: The page that failed (1-indexed)
        stage: "structure" or "extraction"
        original_error: The underlying error
    """

    def __init__(
        self,
        page_number: int,
        stage: str,
        original_error: Optional[Exception] = None,
    ):
        self.page_number = page_number
        self.stage = stage
        self.original_error = original_error
        details = str(original_error) if original_error else None
        super().__init__(f"Page {page_number} failed during {stage}", details)


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(ExtractionError):
    """Base class for question store errors."""

    pass


class NothingToSaveError(StorageError):
    """
    Raised when a save batch contains no valid question.

    Attributes:
        rejected: Number of records dropped by validation
    """

    def __init__(self, rejected: int = 0):
        self.rejected = rejected
        details = f"{rejected} record(s) failed validation" if rejected else None
        super().__init__("No valid questions to save", details)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


RATE_LIMIT_MARKERS = ("429", "quota", "rate limit", "rate_limit", "resource exhausted", "resource_exhausted")


def is_rate_limit_error(error: BaseException) -> bool:
    """
    Check if an error signals quota or rate limiting.

    Recognized by a 429 status (on our APIError or the SDK's exception) or by
    a quota/rate-limit marker in the message.
    """
    if isinstance(error, APIRateLimitError):
        return True
    if isinstance(error, CredentialsExhaustedError):
        return False
    status_code = getattr(error, "status_code", None)
    if status_code == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def format_error_chain(error: BaseException) -> str:
    """
    Format an exception and its chain for logging.

    Returns a multi-line string showing the error hierarchy.
    """
    lines = []
    current = error
    depth = 0

    while current is not None:
        prefix = "  " * depth + ("└─ " if depth > 0 else "")
        lines.append(f"{prefix}{type(current).__name__}: {current}")

        if getattr(current, "original_error", None):
            current = current.original_error
            depth += 1
        elif current.__cause__:
            current = current.__cause__
            depth += 1
        else:
            break

    return "\n".join(lines)
