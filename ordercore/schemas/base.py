"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that read from ORM models MUST inherit from
BaseResponseSchema so ``from_attributes`` is always on.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class NDRResponse(BaseResponseSchema):
            id: UUID
            ndr_reason: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Allow population by field name or alias
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Unknown fields are ignored (forward compatibility with newer dashboards).
    """
    model_config = ConfigDict(
        extra='ignore',
    )
