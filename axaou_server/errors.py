from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base error. Handlers render it as ``{"error": message}``."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidInterval(AppError):
    """Malformed variant id, interval or contig name."""

    status_code = 400


class NotFound(AppError):
    status_code = 404


class DataTransform(AppError):
    """Store-side failure or malformed upstream data."""

    status_code = 500


class TaskFailure(AppError):
    """A worker thread or background task died."""

    status_code = 500


class DecodeError(AppError):
    # Raised per row while decoding; callers warn and skip, never surfaced.
    status_code = 500


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
