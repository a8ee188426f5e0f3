from fastapi import HTTPException, Request

from repchat.services.errors import NotFound, ServiceError, StoreUnavailable, ValidationFailed
from repchat.services.rep_directory import RepDirectory

ERROR_STATUS = {
    NotFound: 404,
    ValidationFailed: 400,
    StoreUnavailable: 503,
}


def http_error(error: ServiceError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=500, detail=error.message)


def get_rep_directory(request: Request) -> RepDirectory:
    directory = getattr(request.app.state, "rep_directory", None)
    if directory is None:
        directory = RepDirectory()
        request.app.state.rep_directory = directory
    return directory
