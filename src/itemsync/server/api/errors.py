"""API error types and their JSON rendering.

Every error leaves the API as ``{"error": {"message": ..., "tag": ...}}``.
"""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse

from itemsync.server.schemas import ErrorDetail, ErrorResponse


class ApiError(Exception):
    """Error rendered with the uniform error body."""

    def __init__(
        self,
        status_code: int,
        message: str,
        tag: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.tag = tag
        self.headers = headers


class InvalidAuthError(ApiError):
    """Missing, invalid, expired or revoked credentials."""

    def __init__(self) -> None:
        super().__init__(
            status.HTTP_401_UNAUTHORIZED,
            "Invalid login credentials.",
            "invalid-auth",
            headers={"WWW-Authenticate": "Bearer"},
        )


class ItemNotFoundError(ApiError):
    """Referenced item does not exist for the account."""

    def __init__(self) -> None:
        super().__init__(status.HTTP_404_NOT_FOUND, "Item not found.", "item-not-found")


async def api_error_handler(_request: Request, exc: ApiError) -> JSONResponse:
    """Render an ApiError as JSON."""
    body = ErrorResponse(error=ErrorDetail(message=exc.message, tag=exc.tag))
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(),
        headers=exc.headers,
    )
