"""Error taxonomy of the time-tracking engine.

Every engine error is an ``HTTPException`` so the FastAPI layer can return it
unchanged, while library callers simply catch the specific subclass.
"""
from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status


class TimeHarborError(HTTPException):
    """Base class for engine errors."""

    error_code = "ERROR"

    def __init__(self, status_code: int, detail: str, error_code: Optional[str] = None) -> None:
        super().__init__(status_code=status_code, detail=detail)
        if error_code:
            self.error_code = error_code

    def __str__(self) -> str:
        return str(self.detail)


class ConflictError(TimeHarborError):
    """409 - the worker already holds an active session."""

    def __init__(self, detail: str = "session already active") -> None:
        super().__init__(status.HTTP_409_CONFLICT, detail, "CONFLICT")


class NotFoundError(TimeHarborError):
    """404 - unknown session or ticket."""

    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(status.HTTP_404_NOT_FOUND, f"{resource} not found", "NOT_FOUND")


class InvalidStateError(TimeHarborError):
    """409 - operation not allowed in the record's current state."""

    def __init__(self, detail: str) -> None:
        super().__init__(status.HTTP_409_CONFLICT, detail, "INVALID_STATE")


class ValidationError(TimeHarborError):
    """400 - malformed input."""

    def __init__(self, detail: str) -> None:
        super().__init__(status.HTTP_400_BAD_REQUEST, detail, "VALIDATION_ERROR")


class PermissionDeniedError(TimeHarborError):
    def __init__(self, detail: str = "Not allowed to edit this session") -> None:
        super().__init__(status.HTTP_403_FORBIDDEN, detail, "FORBIDDEN")
