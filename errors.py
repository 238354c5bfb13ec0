"""Exceptions raised by the domain and repository layers.

The API maps each class to an HTTP status; everything else in the code base
raises these instead of returning error dictionaries.
"""

from typing import List, Optional


class FinanceError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(FinanceError):
    """Input is malformed or breaks an entity invariant."""

    status_code = 400


class DuplicateError(FinanceError):
    """A uniqueness rule (budget per category/period, goal identity, email) was violated."""

    status_code = 409


class NotFoundError(FinanceError):
    status_code = 404


class AuthenticationError(FinanceError):
    status_code = 401
