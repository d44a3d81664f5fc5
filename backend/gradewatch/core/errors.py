"""Domain errors raised by services and their HTTP mapping."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class GradewatchError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class GradeValidationError(GradewatchError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class GradePermissionError(GradewatchError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(GradewatchError):
    status_code = status.HTTP_404_NOT_FOUND


class GradeConflictError(GradewatchError):
    """Natural-key write lost against a concurrent writer twice in a row."""

    status_code = status.HTTP_409_CONFLICT


class QuarterLockedError(GradewatchError):
    status_code = status.HTTP_409_CONFLICT


class NarrativeError(GradewatchError):
    status_code = status.HTTP_502_BAD_GATEWAY


def add_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(GradewatchError)
    async def gradewatch_error_handler(request: Request, exc: GradewatchError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
