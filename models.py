import datetime as dt
import time
import uuid
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    Enum as SAEnum,
    Float,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


NA_CATEGORY = "NA"

DEFAULT_CATEGORIES: dict[TransactionType, list[str]] = {
    TransactionType.income: ["Salary", "Freelance", "Investments", "Gift", "Other"],
    TransactionType.expense: [
        "Housing",
        "Transportation",
        "Food",
        "Utilities",
        "Insurance",
        "Healthcare",
        "Savings",
        "Personal",
        "Entertainment",
        "Other",
    ],
}


def new_record_id() -> str:
    return uuid.uuid4().hex


def now_millis() -> int:
    return int(time.time() * 1000)


class CreatedAtMixin:
    created_at: Mapped[int] = mapped_column(
        BigInteger, default=now_millis, nullable=False
    )


class TransactionRecord(Base, CreatedAtMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_record_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category", "user_id", "category"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )


class CategoryRecord(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_record_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
        Index("ix_categories_user_name", "user_id", "name"),
    )


class FinancialPlanRecord(Base, CreatedAtMixin):
    __tablename__ = "financial_plans"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_record_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    target_income: Mapped[float] = mapped_column(Float, nullable=False)
    target_savings: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("ix_financial_plans_user_created", "user_id", "created_at"),)
