"""
Shared Models
=============

Pydantic response models shared across services.
"""

from shared.models.common import (
    ErrorResponse,
    HealthResponse,
    PaginatedResponse,
)

__all__ = [
    "PaginatedResponse",
    "ErrorResponse",
    "HealthResponse",
]
