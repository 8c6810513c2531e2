"""Errors surfaced to HTTP callers."""

from __future__ import annotations


class ServerError(Exception):
    """Error carrying the HTTP status code to report to the caller."""

    def __init__(self, message: str, code: int = 500):
        """Initialize the error.

        Args:
            message: Human readable description, returned as the ``Error`` field
            code: HTTP status code for the response
        """
        super().__init__(message)
        self.message = message
        self.code = code

    @classmethod
    def from_db_error(cls, err: Exception) -> "ServerError":
        """Wrap a database failure as an internal server error."""
        return cls(f"Unable to access the database: {err}", 500)


class QueryParameterError(ServerError):
    """Raised when a request parameter is missing or malformed."""

    def __init__(self, message: str):
        super().__init__(message, 400)
