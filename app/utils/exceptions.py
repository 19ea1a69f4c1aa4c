from typing import Optional
from fastapi import HTTPException, status


class BloodlineError(HTTPException):
    """Base for domain errors raised by the service layer.

    Subclasses fix the HTTP status so routes can re-raise them untouched.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "bad_request"

    def __init__(self, detail: str, error_code: Optional[str] = None):
        super().__init__(status_code=self.status_code, detail=detail)
        if error_code:
            self.error_code = error_code

    def __str__(self) -> str:
        return f"{self.__class__.__name__}: {self.detail}"


class ValidationError(BloodlineError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "validation_error"


class AuthorizationError(BloodlineError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "not_authorized"


class NotFoundError(BloodlineError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "not_found"


class StateConflictError(BloodlineError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "state_conflict"


class EligibilityError(BloodlineError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "not_eligible"
