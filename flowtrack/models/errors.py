"""Error body returned by every failing API call."""

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Human readable message")
    error_code: str = Field(..., description="Machine readable code, e.g. not_found or invalid_state")


def error_responses(*status_codes: int) -> dict:
    """OpenAPI ``responses=`` entries documenting ErrorResponse for each status."""
    return {code: {"model": ErrorResponse} for code in status_codes}
