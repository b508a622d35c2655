"""Envelope responses and error-code to HTTP status mapping."""

from typing import Any

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from approval_engine.services.errors import WorkflowError
from approval_engine.services.workflow import WorkflowResult

STATUS_BY_ERROR_CODE = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "collaborator_failure": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def envelope(result: WorkflowResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Render a workflow result with the matching status code."""
    if result.success:
        code = success_status
    else:
        code = STATUS_BY_ERROR_CODE.get(result.error_code or "", status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=code, content=jsonable_encoder(result.to_dict()))


def ok(
    data: Any,
    message: str | None = None,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    return envelope(WorkflowResult(success=True, data=data, message=message), status_code)


def error_response(exc: WorkflowError) -> JSONResponse:
    return envelope(WorkflowResult.failure(exc))
