"""Custom exception hierarchy for CineMirror.

This module defines a consistent exception hierarchy that enables:
- Structured error responses with error codes
- Consistent HTTP status code mapping
- A retryable flag so callers know whether requesting again can succeed

Usage:
    from cinemirror.core.exceptions import PageLimitExceededError

    raise PageLimitExceededError(page=501, max_page=500)
"""

from typing import Any


class CineMirrorError(Exception):
    """Base exception for all CineMirror errors.

    Attributes:
        code: Machine-readable error code (e.g., "PAGE_LIMIT_EXCEEDED")
        message: Human-readable error message
        status_code: HTTP status code to return
        retryable: Whether repeating the same request may succeed
        details: Additional error details (optional)
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Override default message
            code: Override default error code
            details: Additional error details
        """
        if message:
            self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Convert exception to API error response format.

        Args:
            request_id: Request correlation ID

        Returns:
            Error response dictionary
        """
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if request_id:
            error["request_id"] = request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(CineMirrorError):
    """Raised when input validation fails."""

    code: str = "VALIDATION_ERROR"
    message: str = "Validation error"
    status_code: int = 400

    def __init__(
        self,
        message: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with optional field information."""
        if details is None:
            details = {}
        if field:
            details["field"] = field
        super().__init__(message=message, details=details if details else None)


class PageLimitExceededError(ValidationError):
    """Raised when a page lies beyond the upstream provider's hard page cap.

    Never retryable: the upstream endpoint cannot serve the page at all, so
    it is rejected before any upstream call is made.
    """

    code: str = "PAGE_LIMIT_EXCEEDED"
    message: str = "Requested page is beyond the upstream page limit"

    def __init__(
        self,
        page: int | None = None,
        max_page: int | None = None,
        message: str | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if page is not None:
            details["page"] = page
        if max_page is not None:
            details["max_page"] = max_page
            if not message and page is not None:
                message = (
                    f"Page {page} is beyond the upstream limit. "
                    f"Maximum available page is {max_page}."
                )
        super().__init__(message=message, field="page", details=details)


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class NotFoundError(CineMirrorError):
    """Base class for resource not found errors."""

    code: str = "NOT_FOUND"
    message: str = "Resource not found"
    status_code: int = 404


class CatalogItemNotFoundError(NotFoundError):
    """Raised when an item is neither mirrored locally nor known upstream."""

    code: str = "CATALOG_ITEM_NOT_FOUND"
    message: str = "Catalog item not found"

    def __init__(self, category: str, tmdb_id: int) -> None:
        super().__init__(
            message=f"No {category} item with TMDB id {tmdb_id}",
            details={"category": category, "tmdb_id": tmdb_id},
        )


# =============================================================================
# External Service Errors (502)
# =============================================================================


class ExternalServiceError(CineMirrorError):
    """Base class for external service errors."""

    code: str = "EXTERNAL_SERVICE_ERROR"
    message: str = "External service error"
    status_code: int = 502


class UpstreamFetchError(ExternalServiceError):
    """Raised when the upstream catalog fails during a gap-fill or lookup.

    Retryable: pages committed before the failure stay committed, so a later
    request resumes from the last recorded high-water mark.
    """

    code: str = "UPSTREAM_FETCH_ERROR"
    message: str = "Failed to fetch data from the upstream catalog"
    retryable: bool = True

    def __init__(
        self,
        message: str | None = None,
        category: str | None = None,
        page: int | None = None,
        error: str | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if category:
            details["category"] = category
        if page is not None:
            details["page"] = page
        if error:
            details["error"] = error
        if not message and page is not None:
            message = f"Failed to fetch page {page} from the upstream catalog"
        super().__init__(message=message, details=details if details else None)


# =============================================================================
# Internal Signals
# =============================================================================


class StaleLedgerEntryError(CineMirrorError):
    """Ledger claims a page is synced but the primary store has no rows for it.

    Internal only. The synchronizer raises and handles this itself by
    invalidating the entry and refilling the page; it never reaches callers.
    """

    code: str = "STALE_LEDGER_ENTRY"
    message: str = "Ledger entry has no matching rows"

    def __init__(self, category: str, page: int, filters_hash: str | None) -> None:
        self.category = category
        self.page = page
        self.filters_hash = filters_hash
        super().__init__(
            message=f"Page {page} of {category} is recorded as synced but has no rows",
            details={"category": category, "page": page, "filters_hash": filters_hash},
        )
