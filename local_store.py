from __future__ import annotations

import asyncio
import json
import logging

from pydantic import BaseModel

from events import ChangeFeed, Listener, Unsubscribe
from identity import DEMO_USER_ID
from models import NA_CATEGORY, new_record_id, now_millis
from persistence import (
    Collection,
    EditableCollection,
    EntityKind,
    PersistenceAdapter,
    RecordNotFound,
    default_categories,
    ensure_category_available,
    order_categories,
    order_plans,
    order_transactions,
    sample_transactions,
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
from storage import LocalStorage


logger = logging.getLogger(__name__)

STORAGE_KEYS: dict[EntityKind, str] = {
    EntityKind.transactions: "finance.transactions",
    EntityKind.categories: "finance.categories",
    EntityKind.plans: "finance.plans",
}


class _LocalCollection:
    """Collection stored as one serialized list under its own storage key."""

    model: type[BaseModel]

    def __init__(self, adapter: LocalAdapter) -> None:
        super().__init__(adapter)
        self.key = STORAGE_KEYS[self.kind]

    def _read(self) -> list:
        raw = self.adapter.storage.get_item(self.key)
        if not raw:
            return []
        return [self.model.model_validate(item) for item in json.loads(raw)]

    def _write(self, items: list) -> None:
        payload = [item.model_dump(mode="json", by_alias=True) for item in items]
        self.adapter.storage.set_item(self.key, json.dumps(payload, ensure_ascii=False))

    def _order(self, items: list) -> list:
        return items

    def snapshot(self) -> list:
        return self._order(self._read())

    def _check_append(self, items: list, record: BaseModel) -> None:
        pass

    async def _append(self, record: BaseModel) -> None:
        await self.adapter.simulate_latency()
        # no await between the check and the write
        items = self._read()
        self._check_append(items, record)
        items.append(record)
        self._write(items)
        self.adapter.publish(self.kind)

    async def _merge(self, record_id: str, changes: dict[str, object]) -> None:
        await self.adapter.simulate_latency()
        items = self._read()
        for index, item in enumerate(items):
            if item.id == record_id:
                items[index] = item.model_copy(update=changes)
                break
        else:
            raise RecordNotFound(f"{self.label} not found")
        self._write(items)
        self.adapter.publish(self.kind)

    async def delete(self, record_id: str) -> None:
        await self.adapter.simulate_latency()
        items = self._read()
        remaining = [item for item in items if item.id != record_id]
        if len(remaining) == len(items):
            return
        self._write(remaining)
        self.adapter.publish(self.kind)


class LocalTransactions(_LocalCollection, EditableCollection):
    kind = EntityKind.transactions
    label = "Transaction"
    model = Transaction

    def _order(self, items: list) -> list:
        return order_transactions(items)

    def _seed_if_empty(self) -> None:
        if self._read():
            return
        self._write(sample_transactions(self.adapter.user_id))
        logger.info("demo_seeded: kind=%s", self.kind.value)
        self.adapter.publish(self.kind)

    async def add(self, data: TransactionIn) -> None:
        record = Transaction(
            id=new_record_id(),
            user_id=self.adapter.user_id,
            created_at=now_millis(),
            **data.model_dump(),
        )
        await self._append(record)

    async def update(self, record_id: str, patch: TransactionPatch) -> None:
        await self._merge(record_id, patch.changes())


class LocalCategories(_LocalCollection, Collection):
    kind = EntityKind.categories
    label = "Category"
    model = Category

    def _order(self, items: list) -> list:
        return order_categories(items)

    def _seed_if_empty(self) -> None:
        if self._read():
            return
        self._write(default_categories())
        logger.info("demo_seeded: kind=%s", self.kind.value)
        self.adapter.publish(self.kind)

    def _check_append(self, items: list, record: Category) -> None:
        ensure_category_available(items, record)

    async def add(self, data: CategoryIn) -> None:
        ensure_category_available(self._read(), data)
        record = Category(id=new_record_id(), name=data.name, type=data.type)
        await self._append(record)


class LocalPlans(_LocalCollection, EditableCollection):
    kind = EntityKind.plans
    label = "Financial plan"
    model = FinancialPlan

    def _order(self, items: list) -> list:
        return order_plans(items)

    async def add(self, data: FinancialPlanIn) -> None:
        record = FinancialPlan(
            id=new_record_id(),
            user_id=self.adapter.user_id,
            created_at=now_millis(),
            **data.model_dump(),
        )
        await self._append(record)

    async def update(self, record_id: str, patch: FinancialPlanPatch) -> None:
        await self._merge(record_id, patch.changes())


class LocalAdapter(PersistenceAdapter):
    """
    Demo-mode storage in local key/value storage.

    Change notification goes through a feed owned by this instance; writes
    sleep for ``write_delay_secs`` first to behave like a network store.
    """

    mode = "local"

    def __init__(
        self,
        storage: LocalStorage,
        *,
        write_delay_secs: float = 0.5,
        user_id: str = DEMO_USER_ID,
    ) -> None:
        super().__init__(user_id)
        self.storage = storage
        self.write_delay_secs = write_delay_secs
        self.feed = ChangeFeed()
        self.transactions = LocalTransactions(self)
        self.categories = LocalCategories(self)
        self.plans = LocalPlans(self)

    async def simulate_latency(self) -> None:
        if self.write_delay_secs > 0:
            await asyncio.sleep(self.write_delay_secs)

    def publish(self, kind: EntityKind) -> None:
        self.feed.publish(kind)

    def _listen(self, kind: EntityKind, listener: Listener) -> Unsubscribe:
        return self.feed.subscribe(kind, listener)

    async def _cascade_delete_category(
        self, category_id: str, category_name: str
    ) -> None:
        # two plain rewrites; nothing here can fail halfway under normal use
        await self.simulate_latency()
        categories = [c for c in self.categories._read() if c.id != category_id]
        self.categories._write(categories)

        transactions = [
            t.model_copy(update={"category": NA_CATEGORY})
            if t.category == category_name
            else t
            for t in self.transactions._read()
        ]
        self.transactions._write(transactions)

        self.publish(EntityKind.categories)
        self.publish(EntityKind.transactions)
