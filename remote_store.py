from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from database import session_scope
from events import ChangeFeed, Listener, Unsubscribe
from models import (
    NA_CATEGORY,
    CategoryRecord,
    FinancialPlanRecord,
    TransactionRecord,
    now_millis,
)
from persistence import (
    Collection,
    EditableCollection,
    EntityKind,
    PermissionDenied,
    PersistenceAdapter,
    RecordNotFound,
    default_categories,
    ensure_category_available,
    report_store_error,
)
from schemas import (
    Category,
    CategoryIn,
    FinancialPlan,
    FinancialPlanIn,
    FinancialPlanPatch,
    Transaction,
    TransactionIn,
    TransactionPatch,
)


logger = logging.getLogger(__name__)


class DocumentDatabase:
    """
    Multi-tenant document store on top of SQLAlchemy.

    Every row carries its owner's uid. Committed writes are announced on the
    feed under ``(user_id, kind)`` so live queries can re-run.
    """

    def __init__(self, session_factory: sessionmaker, feed: Optional[ChangeFeed] = None) -> None:
        self.session_factory = session_factory
        self.feed = feed or ChangeFeed()

    @contextmanager
    def session(self) -> Iterator[Session]:
        with session_scope(self.session_factory) as session:
            yield session

    def notify(self, user_id: str, kind: EntityKind) -> None:
        self.feed.publish((user_id, kind))

    def listen(self, user_id: str, kind: EntityKind, listener: Listener) -> Unsubscribe:
        return self.feed.subscribe((user_id, kind), listener)


def _transaction_entity(record: TransactionRecord) -> Transaction:
    return Transaction(
        id=record.id,
        user_id=record.user_id,
        type=record.type,
        amount=record.amount,
        category=record.category,
        date=record.date,
        notes=record.notes,
        created_at=record.created_at,
    )


def _category_entity(record: CategoryRecord) -> Category:
    return Category(
        id=record.id,
        name=record.name,
        type=record.type,
        is_system=record.is_system,
    )


def _plan_entity(record: FinancialPlanRecord) -> FinancialPlan:
    return FinancialPlan(
        id=record.id,
        user_id=record.user_id,
        name=record.name,
        start_date=record.start_date,
        end_date=record.end_date,
        target_income=record.target_income,
        target_savings=record.target_savings,
        created_at=record.created_at,
    )


class _RemoteCollection:
    record_model: type

    def __init__(self, adapter: RemoteAdapter) -> None:
        super().__init__(adapter)
        self.db = adapter.database

    def _query(self):
        raise NotImplementedError

    def _entity(self, record):
        raise NotImplementedError

    def snapshot(self) -> list:
        self.adapter.authorize()
        with self.db.session() as session:
            records = session.scalars(self._query()).all()
            return [self._entity(r) for r in records]

    async def _write(self, work: Callable[[Session], bool], action: str) -> None:
        """
        Run ``work`` in one session on a worker thread, then announce the
        change to live queries when ``work`` reports one.

        Domain errors such as a missing record or a taken name go up as they
        are; store failures are reported first.
        """

        def run() -> None:
            self.adapter.authorize()
            with self.db.session() as session:
                changed = work(session)
            if changed:
                self.db.notify(self.adapter.user_id, self.kind)

        try:
            await asyncio.to_thread(run)
        except ValueError:
            raise
        except Exception as exc:
            report_store_error(exc, action)
            raise

    async def _insert(self, record, action: str) -> None:
        def work(session: Session) -> bool:
            session.add(record)
            return True

        await self._write(work, action)

    async def _merge(self, record_id: str, changes: dict[str, object]) -> None:
        def work(session: Session) -> bool:
            record = session.get(self.record_model, record_id)
            if not record or record.user_id != self.adapter.user_id:
                raise RecordNotFound(f"{self.label} not found")
            for field, value in changes.items():
                setattr(record, field, value)
            return True

        await self._write(work, f"updating {self.label.lower()}")

    async def delete(self, record_id: str) -> None:
        logger.info(
            "Deleting %s %s for user %s", self.label.lower(), record_id, self.adapter.user_id
        )

        def work(session: Session) -> bool:
            result = session.execute(
                delete(self.record_model).where(
                    self.record_model.id == record_id,
                    self.record_model.user_id == self.adapter.user_id,
                )
            )
            return bool(result.rowcount)

        await self._write(work, f"deleting {self.label.lower()}")


class RemoteTransactions(_RemoteCollection, EditableCollection):
    kind = EntityKind.transactions
    label = "Transaction"
    record_model = TransactionRecord

    def _query(self):
        return (
            select(TransactionRecord)
            .where(TransactionRecord.user_id == self.adapter.user_id)
            .order_by(TransactionRecord.date.desc(), TransactionRecord.created_at.desc())
        )

    def _entity(self, record: TransactionRecord) -> Transaction:
        return _transaction_entity(record)

    async def add(self, data: TransactionIn) -> None:
        record = TransactionRecord(
            user_id=self.adapter.user_id,
            created_at=now_millis(),
            **data.model_dump(),
        )
        await self._insert(record, "adding transaction")

    async def update(self, record_id: str, patch: TransactionPatch) -> None:
        await self._merge(record_id, patch.changes())


class RemoteCategories(_RemoteCollection, Collection):
    kind = EntityKind.categories
    label = "Category"
    record_model = CategoryRecord

    def _query(self):
        return (
            select(CategoryRecord)
            .where(CategoryRecord.user_id == self.adapter.user_id)
            .order_by(CategoryRecord.name.asc())
        )

    def _entity(self, record: CategoryRecord) -> Category:
        return _category_entity(record)

    def _seed_if_empty(self) -> None:
        user_id = self.adapter.user_id
        self.adapter.authorize()
        with self.db.session() as session:
            count = session.scalar(
                select(func.count(CategoryRecord.id)).where(
                    CategoryRecord.user_id == user_id
                )
            )
            if count:
                return
            session.add_all(
                CategoryRecord(
                    id=category.id,
                    user_id=user_id,
                    name=category.name,
                    type=category.type,
                    is_system=category.is_system,
                )
                for category in default_categories()
            )
        logger.info("categories_seeded: user=%s", user_id)
        self.db.notify(user_id, self.kind)

    async def add(self, data: CategoryIn) -> None:
        user_id = self.adapter.user_id

        def work(session: Session) -> bool:
            existing = session.scalars(
                select(CategoryRecord).where(CategoryRecord.user_id == user_id)
            ).all()
            ensure_category_available([_category_entity(r) for r in existing], data)
            session.add(
                CategoryRecord(
                    user_id=user_id, name=data.name, type=data.type, is_system=False
                )
            )
            return True

        await self._write(work, "adding category")


class RemotePlans(_RemoteCollection, EditableCollection):
    kind = EntityKind.plans
    label = "Financial plan"
    record_model = FinancialPlanRecord

    def _query(self):
        return (
            select(FinancialPlanRecord)
            .where(FinancialPlanRecord.user_id == self.adapter.user_id)
            .order_by(FinancialPlanRecord.created_at.desc())
        )

    def _entity(self, record: FinancialPlanRecord) -> FinancialPlan:
        return _plan_entity(record)

    async def add(self, data: FinancialPlanIn) -> None:
        record = FinancialPlanRecord(
            user_id=self.adapter.user_id,
            created_at=now_millis(),
            **data.model_dump(),
        )
        await self._insert(record, "adding financial plan")

    async def update(self, record_id: str, patch: FinancialPlanPatch) -> None:
        await self._merge(record_id, patch.changes())


class RemoteAdapter(PersistenceAdapter):
    """
    Storage for a signed-in user in the shared document database.

    ``auth_uid`` is the identity the requests are made with; the store only
    allows access to the namespace of that same uid.
    """

    mode = "remote"

    def __init__(
        self, database: DocumentDatabase, user_id: str, *, auth_uid: Optional[str] = None
    ) -> None:
        super().__init__(user_id)
        self.database = database
        self.auth_uid = user_id if auth_uid is None else auth_uid
        self.transactions = RemoteTransactions(self)
        self.categories = RemoteCategories(self)
        self.plans = RemotePlans(self)

    def authorize(self) -> None:
        if self.auth_uid != self.user_id:
            raise PermissionDenied()

    def _listen(self, kind: EntityKind, listener: Listener) -> Unsubscribe:
        return self.database.listen(self.user_id, kind, listener)

    def _cascade(self, category_id: str, category_name: str) -> None:
        self.authorize()
        # one unit of work: the category goes away and its transactions
        # move to NA, or nothing changes
        with self.database.session() as session:
            session.execute(
                delete(CategoryRecord).where(
                    CategoryRecord.id == category_id,
                    CategoryRecord.user_id == self.user_id,
                )
            )
            session.execute(
                update(TransactionRecord)
                .where(
                    TransactionRecord.user_id == self.user_id,
                    TransactionRecord.category == category_name,
                )
                .values(category=NA_CATEGORY)
            )
        self.database.notify(self.user_id, EntityKind.categories)
        self.database.notify(self.user_id, EntityKind.transactions)

    async def _cascade_delete_category(
        self, category_id: str, category_name: str
    ) -> None:
        try:
            await asyncio.to_thread(self._cascade, category_id, category_name)
        except Exception as exc:
            report_store_error(exc, "deleting category")
            raise
