"""Base exception class for bucketfs."""

from __future__ import annotations

from typing import Any


class BucketFSException(Exception):
    """Base bucketfs exception.

    All library exceptions inherit from this class. The fields follow
    RFC 7807 Problem Details so errors can be rendered directly by an
    HTTP layer sitting on top of a bucket.

    Attributes:
        status_code: HTTP-equivalent status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        extra: Additional context-specific information about the error.

    Example:
            raise BucketFSException(
            status_code=404,
            detail="Object not found",
            type="object-not-found",
            extra={"key": "a/b.txt", "backend": "s3"}
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize bucketfs exception.

        Args:
            status_code: HTTP-equivalent status code.
            detail: Human-readable error message.
            type: Error type identifier.
            title: Short summary of the problem type.
            extra: Additional context about the error.
        """
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        """Get default title for a status code.

        Args:
            status_code: HTTP-equivalent status code.

        Returns:
            Human-readable title for the status code.
        """
        titles = {
            400: "Bad Request",
            404: "Not Found",
            409: "Conflict",
            499: "Client Closed Request",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")

    def to_problem(self) -> dict[str, Any]:
        """Render the exception as an RFC 7807 problem document."""
        problem: dict[str, Any] = {
            "type": self.type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        if self.extra:
            problem.update(self.extra)
        return problem
