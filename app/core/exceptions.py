from typing import Any, Dict, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    default_code = "SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: Optional[str] = None,
        **details: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or self.default_code
        self.details: Dict[str, Any] = details

    @property
    def detail(self) -> Dict[str, Any]:
        """Payload for HTTPException.detail: code, message and any extra context."""
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        for key, value in self.details.items():
            payload[key] = value if isinstance(value, (int, bool)) or value is None else str(value)
        return payload


class ValidationError(ServiceError):
    """Malformed or rule-breaking input from the caller."""

    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, **details: Any) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST, code, **details)


class NotFoundError(ServiceError):
    default_code = "NOT_FOUND"

    def __init__(self, message: str, code: Optional[str] = None, **details: Any) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND, code, **details)


class ConflictError(ServiceError):
    """Business rule rejected the operation against current state."""

    default_code = "CONFLICT"

    def __init__(self, message: str, code: Optional[str] = None, **details: Any) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, code, **details)


class AuthorizationError(ServiceError):
    default_code = "FORBIDDEN"

    def __init__(self, message: str = "Not authorized to access this resource", code: Optional[str] = None, **details: Any) -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN, code, **details)


class InvariantError(ServiceError):
    """Internal consistency check failed before a write. Always a bug."""

    default_code = "INVARIANT_VIOLATION"

    def __init__(self, message: str, code: Optional[str] = None, **details: Any) -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR, code, **details)
