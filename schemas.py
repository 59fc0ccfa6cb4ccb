import datetime as dt
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from models import TransactionType


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Transaction(_Document):
    id: str
    user_id: str
    type: TransactionType
    amount: float = Field(..., ge=0)
    category: str
    date: dt.date
    notes: Optional[str] = None
    created_at: int


class Category(_Document):
    id: str
    name: str
    type: TransactionType
    is_system: bool = False


class FinancialPlan(_Document):
    id: str
    user_id: str
    name: str
    start_date: dt.date
    end_date: dt.date
    target_income: float
    target_savings: float
    created_at: int


class _Input(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
    )


class TransactionIn(_Input):
    type: TransactionType
    amount: float = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    date: dt.date
    notes: Optional[str] = Field(default=None, max_length=500)


class CategoryIn(_Input):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class FinancialPlanIn(_Input):
    name: str = Field(..., min_length=1, max_length=120)
    start_date: dt.date
    end_date: dt.date
    target_income: float
    target_savings: float


class _Patch(_Input):
    """Partial update; only fields the caller actually set are merged."""

    nullable_fields: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def _reject_nulls(self):
        for name in self.model_fields_set:
            if getattr(self, name) is None and name not in self.nullable_fields:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class TransactionPatch(_Patch):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"notes"})

    type: Optional[TransactionType] = None
    amount: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[dt.date] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class FinancialPlanPatch(_Patch):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    target_income: Optional[float] = None
    target_savings: Optional[float] = None


class ProfileUpdate(_Input):
    display_name: Optional[str] = Field(default=None, max_length=100)
    photo_url: Optional[str] = Field(default=None, max_length=500)


class SignInIn(_Input):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1, max_length=200)


class SignUpIn(SignInIn):
    display_name: str = Field(..., min_length=1, max_length=100)
