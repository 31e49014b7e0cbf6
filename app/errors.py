from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class MappingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(MappingError):
    """Malformed, missing or inconsistent mapping input."""


class ProtectedPathError(ValidationError):
    """The path belongs to the reserved namespace."""

    status_code = 403


class ConflictError(MappingError):
    status_code = 409


class NotFoundError(MappingError):
    status_code = 404


class UnauthorizedError(MappingError):
    status_code = 401


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MappingError)
    async def _mapping_error_handler(_: Request, exc: MappingError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.message},
        )
