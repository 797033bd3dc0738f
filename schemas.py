import datetime as dt
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer

from models import TransactionType

CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT)


# Money travels as a fixed two-decimal string ("12.50") so JSON never holds a float.
Money = Annotated[
    Decimal,
    AfterValidator(quantize_money),
    PlainSerializer(lambda v: f"{v:.2f}", return_type=str, when_used="json"),
]


class TransactionIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    date: dt.date
    description: str = Field(..., min_length=1, max_length=255)
    amount: Annotated[Decimal, Field(max_digits=10, decimal_places=2)]
    category_id: Optional[int] = Field(default=None, gt=0)
    type: TransactionType
    notes: Optional[str] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: dt.date
    description: str
    amount: Money
    category_id: Optional[int] = None
    type: TransactionType
    notes: Optional[str] = None
    created_at: dt.datetime
    category_name: Optional[str] = None
    category_color: Optional[str] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    color: str
    created_at: dt.datetime


class AnalyticsSummary(BaseModel):
    total_income: Money = Decimal("0.00")
    total_expenses: Money = Decimal("0.00")
    transaction_count: int = 0


class CategoryAnalytics(BaseModel):
    name: str
    color: str
    total: Money


class Analytics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    summary: AnalyticsSummary
    by_category: list[CategoryAnalytics] = Field(
        default_factory=list, alias="byCategory"
    )


class MessageOut(BaseModel):
    message: str
