"""Base schemas and common types for the Sarana Care API."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class SaranaBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(SaranaBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(SaranaBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
    success: bool = False


# =============================================================================
# COMMON REFERENCE SCHEMAS
# =============================================================================


class UserRef(SaranaBaseModel):
    """Minimal user reference for embedding in responses."""

    id: UUID
    name: str


class CategoryRef(SaranaBaseModel):
    """Category reference (also the full category shape)."""

    id: UUID
    name: str
