"""Domain error taxonomy.

Every error carries an HTTP status and a stable ``error_code`` so the app-level
handler in ``eduvault.main`` can render the same envelope used for
``HTTPException``. Keyword details are echoed back to the caller, which is how
not-found responses report the identifiers that were tried.
"""

from __future__ import annotations


class ContentError(Exception):
    status_code = 500
    error_code = "content_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}


class ValidationError(ContentError):
    status_code = 400
    error_code = "validation_error"


class AuthorizationError(ContentError):
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ContentError):
    status_code = 404
    error_code = "not_found"


class ConflictError(ContentError):
    status_code = 409
    error_code = "conflict"


class BackendError(ContentError):
    status_code = 500
    error_code = "backend_error"

    def __init__(self, message: str, *, operation: str, **details):
        super().__init__(message, operation=operation, **details)
        self.operation = operation
