from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from events import Listener, Unsubscribe
from models import (
    DEFAULT_CATEGORIES,
    NA_CATEGORY,
    TransactionType,
    new_record_id,
    now_millis,
)
from schemas import Category, CategoryIn, FinancialPlan, Transaction


logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = (
    "Database permission denied. Check the access rules of the document store: "
    "a signed-in user may only read and write documents in the namespace "
    "matching their own uid."
)


class EntityKind(str, Enum):
    transactions = "transactions"
    categories = "categories"
    plans = "plans"


class PersistenceError(RuntimeError):
    pass


class PermissionDenied(PersistenceError):
    def __init__(self, message: str = PERMISSION_DENIED_MESSAGE) -> None:
        super().__init__(message)


class RecordNotFound(ValueError):
    pass


def report_store_error(exc: BaseException, action: str) -> None:
    logger.error("Error %s: %s", action, exc)
    if isinstance(exc, PermissionDenied):
        logger.error(PERMISSION_DENIED_MESSAGE)


def order_transactions(items: Iterable[Transaction]) -> list[Transaction]:
    return sorted(items, key=lambda t: (t.date, t.created_at), reverse=True)


def order_categories(items: Iterable[Category]) -> list[Category]:
    return sorted(items, key=lambda c: c.name)


def order_plans(items: Iterable[FinancialPlan]) -> list[FinancialPlan]:
    return sorted(items, key=lambda p: p.created_at, reverse=True)


def default_categories() -> list[Category]:
    # NA is type-agnostic; it is stored as an expense category
    categories = [
        Category(
            id=new_record_id(),
            name=NA_CATEGORY,
            type=TransactionType.expense,
            is_system=True,
        )
    ]
    for txn_type, names in DEFAULT_CATEGORIES.items():
        categories.extend(
            Category(id=new_record_id(), name=name, type=txn_type) for name in names
        )
    return categories


def sample_transactions(user_id: str, today: Optional[date] = None) -> list[Transaction]:
    today = today or date.today()
    first = today.replace(day=1)
    created = now_millis()
    return [
        Transaction(
            id=new_record_id(),
            user_id=user_id,
            type=TransactionType.income,
            amount=45000,
            category="Salary",
            date=first,
            notes="Monthly salary",
            created_at=created,
        ),
        Transaction(
            id=new_record_id(),
            user_id=user_id,
            type=TransactionType.expense,
            amount=1200,
            category="Food",
            date=max(first, today - timedelta(days=1)),
            notes="Groceries",
            created_at=created + 1,
        ),
        Transaction(
            id=new_record_id(),
            user_id=user_id,
            type=TransactionType.expense,
            amount=350,
            category="Transportation",
            date=today,
            notes="Metro card top-up",
            created_at=created + 2,
        ),
    ]


def ensure_category_available(
    existing: Iterable[Category], data: Union[CategoryIn, Category]
) -> None:
    if data.name == NA_CATEGORY:
        raise ValueError(f"Category name {NA_CATEGORY} is reserved")
    for category in existing:
        if category.type == data.type and category.name == data.name:
            raise ValueError("Category with this name already exists")


def validate_category_choice(
    categories: Iterable[Category], txn_type: TransactionType, name: str
) -> None:
    if name == NA_CATEGORY:
        return
    for category in categories:
        if category.name == name and category.type == txn_type:
            return
    raise ValueError(f"Category {name!r} is not a known {txn_type.value} category")


class Collection(ABC):
    """One entity kind of one user's data."""

    kind: EntityKind
    label: str

    def __init__(self, adapter: PersistenceAdapter) -> None:
        self.adapter = adapter

    @abstractmethod
    def snapshot(self) -> list:
        """Return the full collection in its canonical order."""

    async def fetch(self) -> list:
        """``snapshot`` run off the event loop."""
        return await asyncio.to_thread(self.snapshot)

    @abstractmethod
    async def add(self, data) -> None: ...

    @abstractmethod
    async def delete(self, record_id: str) -> None: ...

    def _seed_if_empty(self) -> None:
        pass

    def seed(self) -> None:
        try:
            self._seed_if_empty()
        except Exception:
            logger.exception("Error seeding %s for user %s", self.kind.value, self.adapter.user_id)

    def subscribe(self, callback: Callable[[list], None]) -> Unsubscribe:
        """
        Call ``callback`` with the current snapshot now and after every change.

        Snapshot failures are logged and skipped so a long-lived listener never
        raises into the publisher.
        """
        self.seed()

        def listener() -> None:
            try:
                items = self.snapshot()
            except Exception:
                logger.exception("Snapshot error for %s", self.kind.value)
                return
            callback(items)

        detach = self.adapter._listen(self.kind, listener)

        def unsubscribe() -> None:
            detach()
            self.adapter._forget(unsubscribe)

        self.adapter._subscriptions.append(unsubscribe)
        listener()
        return unsubscribe


class EditableCollection(Collection):
    @abstractmethod
    async def update(self, record_id: str, patch) -> None: ...


class PersistenceAdapter(ABC):
    """
    Storage for one user. Exactly one implementation is chosen per session;
    callers never branch on the mode.
    """

    mode: str

    transactions: EditableCollection
    categories: Collection
    plans: EditableCollection

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self._subscriptions: list[Unsubscribe] = []

    @abstractmethod
    def _listen(self, kind: EntityKind, listener: Listener) -> Unsubscribe: ...

    @abstractmethod
    async def _cascade_delete_category(
        self, category_id: str, category_name: str
    ) -> None: ...

    def collection(self, kind: EntityKind) -> Collection:
        return {
            EntityKind.transactions: self.transactions,
            EntityKind.categories: self.categories,
            EntityKind.plans: self.plans,
        }[kind]

    def seed(self) -> None:
        for collection in (self.transactions, self.categories, self.plans):
            collection.seed()

    async def delete_category(self, category_id: str, category_name: str) -> None:
        """Delete a category and retag its transactions to NA."""
        if category_name == NA_CATEGORY:
            logger.warning(
                "Refusing to delete system category %s for user %s",
                category_name,
                self.user_id,
            )
            return
        await self._cascade_delete_category(category_id, category_name)
        logger.info(
            "category_deleted: mode=%s user=%s category=%s",
            self.mode,
            self.user_id,
            category_name,
        )

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def _forget(self, unsubscribe: Unsubscribe) -> None:
        try:
            self._subscriptions.remove(unsubscribe)
        except ValueError:
            pass

    def close(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for unsubscribe in subscriptions:
            unsubscribe()
