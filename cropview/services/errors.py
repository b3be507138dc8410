"""
Error taxonomy for CropView.

Backend adapters translate SDK/HTTP exceptions into these types at the
boundary, so the session store, repository and UI only ever handle
domain errors:

- AuthError / AccessDenied: sign-in failures and role mismatches
- ValidationError: rejected user input (e.g. empty expert comment)
- DataAccessError: NotFound, Unauthorized, Transient backend failures
"""

from typing import Optional


class CropViewError(Exception):
    """Base class for all CropView errors."""


class AuthError(CropViewError):
    """Authentication failed (bad credentials, disabled account, backend refusal)."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class AccessDenied(AuthError):
    """Authenticated identity does not hold the role required for the area."""


class ValidationError(CropViewError):
    """Input rejected before reaching the backend."""


class InvalidTransitionError(CropViewError):
    """Annotation workflow action not allowed in the current state."""


class DataAccessError(CropViewError):
    """Base class for document backend failures."""


class NotFoundError(DataAccessError):
    """Requested document does not exist."""


class UnauthorizedError(DataAccessError):
    """Operation refused: IAM denial, or the reviewer no longer holds the role."""


class TransientError(DataAccessError):
    """Network or backend unavailability. Safe to retry."""
