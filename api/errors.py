"""
Mapping from pipeline error codes to HTTP responses.
"""

from typing import NoReturn

from fastapi import HTTPException

from domain.errors import PipelineError
from services.lead_pipeline_service import LeadOperationResult

STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "PERMISSION_DENIED": 403,
    "NOT_FOUND": 404,
    "CONCURRENCY_CONFLICT": 409,
    "INVALID_TRANSITION": 409,
}


def status_for(code: str) -> int:
    return STATUS_BY_CODE.get(code, 500)


def raise_http(code: str, message: str) -> NoReturn:
    raise HTTPException(
        status_code=status_for(code),
        detail={"error_code": code, "message": message},
    )


def raise_for_error(error: PipelineError) -> NoReturn:
    raise_http(error.code, str(error))


def raise_for_failed_result(result: LeadOperationResult) -> None:
    """Turn a failed single-lead result into an HTTP error; successful results pass."""
    if not result.success:
        raise_http(result.error_code or "PIPELINE_ERROR", result.error_message or "Operation failed")
