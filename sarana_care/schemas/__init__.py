"""Pydantic schemas for API request/response validation."""

from .base import (
    CategoryRef,
    ErrorDetail,
    ErrorResponse,
    SaranaBaseModel,
    UserRef,
)
from .complaints import (
    ComplaintCreate,
    ComplaintOut,
    ComplaintPage,
    ComplaintStats,
    ProfileOut,
    ProgressOut,
    StatusTransitionRequest,
)

__all__ = [
    # Base
    "SaranaBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    "UserRef",
    "CategoryRef",
    # Complaints
    "ComplaintPage",
    "ComplaintOut",
    "ComplaintCreate",
    "ProgressOut",
    "StatusTransitionRequest",
    "ComplaintStats",
    "ProfileOut",
]
