"""
Serenity error taxonomy.

Write paths (voting, overrides) raise these to the caller. Read paths that
feed hiding decisions catch them and fail open.
"""
from __future__ import annotations


class SerenityError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SerenityError):
    """Missing or malformed input. Raised before anything is persisted."""
    status_code = 400


class AuthError(SerenityError):
    status_code = 401


class NotFoundError(SerenityError):
    status_code = 404


class PersistenceError(SerenityError):
    """Backing store unreachable, timed out, or a write failed."""
    status_code = 503
