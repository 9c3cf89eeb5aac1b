"""
Error taxonomy for the listing core.
Every error carries the HTTP status the API layer answers with.
"""

from typing import Optional

from pydantic import ValidationError as PydanticValidationError


class ClassifiedsError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class ValidationError(ClassifiedsError):
    """Malformed input; `field` names the first failing field"""
    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        return {"detail": self.message, "field": self.field}


class AuthorizationError(ClassifiedsError):
    status_code = 403


class NotFoundError(ClassifiedsError):
    status_code = 404

    def __init__(self, message: str, table: Optional[str] = None, key: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.key = key


class ConflictError(ClassifiedsError):
    """Unique key or precondition violation"""
    status_code = 409


class QuotaExceededError(ClassifiedsError):
    status_code = 413


class StorageError(ClassifiedsError):
    """Blob store upload/read/delete failure"""
    status_code = 502


def from_pydantic(exc: PydanticValidationError) -> ValidationError:
    """Reduce a pydantic error to the first failing field"""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    return ValidationError(field, f"{field}: {first.get('msg', 'invalid value')}")
