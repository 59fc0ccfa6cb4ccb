from __future__ import annotations

import logging
import threading
from typing import Optional

from sqlalchemy.engine import Engine

from config import Settings
from database import Base, create_db_engine, make_session_factory
from identity import DEMO_USER_ID, DemoSessionStore, IdentityProvider
from insights import GeminiTextGenerator, TextGenerator
from local_store import LocalAdapter
from persistence import PersistenceAdapter
from remote_store import DocumentDatabase, RemoteAdapter
from storage import LocalStorage


logger = logging.getLogger(__name__)


def open_adapter(
    user_id: str,
    *,
    database: DocumentDatabase,
    local_storage: LocalStorage,
    write_delay_secs: float = 0.5,
) -> PersistenceAdapter:
    """Pick the storage backend for a session, once."""
    if user_id == DEMO_USER_ID:
        adapter: PersistenceAdapter = LocalAdapter(
            local_storage, write_delay_secs=write_delay_secs
        )
    else:
        adapter = RemoteAdapter(database, user_id)
    logger.info("adapter_opened: mode=%s user=%s", adapter.mode, user_id)
    return adapter


class AppContext:
    """
    Everything the application shares, built once and passed around
    explicitly.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        engine: Optional[Engine] = None,
        identity: Optional[IdentityProvider] = None,
        text_generator: Optional[TextGenerator] = None,
        local_storage: Optional[LocalStorage] = None,
    ) -> None:
        self.settings = settings
        self.engine = engine or create_db_engine(settings.database_url)
        self.session_factory = make_session_factory(self.engine)
        self.database = DocumentDatabase(self.session_factory)
        self.local_storage = local_storage or LocalStorage(settings.local_storage_path)
        self.demo_sessions = DemoSessionStore(self.local_storage)
        self.identity = identity
        if text_generator is None:
            text_generator = GeminiTextGenerator.from_settings(settings)
        self.text_generator = text_generator
        self._adapters: dict[str, PersistenceAdapter] = {}
        self._lock = threading.Lock()

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def adapter_for(self, user_id: str) -> PersistenceAdapter:
        with self._lock:
            adapter = self._adapters.get(user_id)
            if adapter is None:
                adapter = open_adapter(
                    user_id,
                    database=self.database,
                    local_storage=self.local_storage,
                    write_delay_secs=self.settings.demo_write_delay_secs,
                )
                adapter.seed()
                self._adapters[user_id] = adapter
            return adapter

    def release(self, user_id: str) -> None:
        """Drop the user's adapter unless live streams still depend on it."""
        with self._lock:
            adapter = self._adapters.get(user_id)
            if adapter is None or adapter.subscription_count:
                return
            del self._adapters[user_id]
        adapter.close()

    def close(self) -> None:
        with self._lock:
            adapters, self._adapters = self._adapters, {}
        for adapter in adapters.values():
            adapter.close()
        self.engine.dispose()
