"""
Base schema classes shared by the order, rider and return schemas.

RULE: every response schema built from an ORM row inherits from
BaseResponseSchema; every request body inherits from BaseCreateSchema.
"""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer


# Amounts leave the API as fixed two-place strings ("150.00"), never floats
Money = Annotated[Decimal, PlainSerializer(lambda v: f"{v:.2f}", return_type=str, when_used="json")]


class BaseResponseSchema(BaseModel):
    """
    Response schema read from an ORM instance.

    Usage:
        class ReturnResponse(BaseResponseSchema):
            id: UUID
            status: str
            refund_amount: Money
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Request body. Unknown fields are ignored so older app builds keep working;
    surrounding whitespace is stripped from strings.
    """
    model_config = ConfigDict(
        extra='ignore',
        str_strip_whitespace=True,
    )
