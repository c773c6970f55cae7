# errors.py - Domain error taxonomy
# Services raise these; main.py renders them as structured JSON.

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base domain error carrying an HTTP status, a machine code and a payload"""

    status_code = 500
    code = "error"

    def __init__(self, message: str, code: Optional[str] = None, **payload: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.payload: Dict[str, Any] = payload

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.payload}


class UnauthorizedError(AppError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class InvalidStateError(AppError):
    status_code = 400
    code = "invalid_state"


class AlreadyStoppedError(InvalidStateError):
    code = "already_stopped"


class InvalidRoleError(AppError):
    status_code = 400
    code = "invalid_role"


class InputValidationError(AppError):
    status_code = 400
    code = "validation_error"


class LimitExceededError(AppError):
    status_code = 422
    code = "limit_exceeded"
