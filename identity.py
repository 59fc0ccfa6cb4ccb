from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, replace
from typing import Callable, Optional

from storage import LocalStorage


logger = logging.getLogger(__name__)

DEMO_USER_ID = "DEMO_USER"
DEMO_SESSION_KEY = "finance.demo_session"


@dataclass(frozen=True)
class UserProfile:
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None

    @property
    def is_demo(self) -> bool:
        return self.uid == DEMO_USER_ID

    @property
    def first_name(self) -> str:
        if not self.display_name:
            return "User"
        return self.display_name.split(" ")[0]

    def to_dict(self) -> dict[str, Optional[str]]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> UserProfile:
        return cls(
            uid=str(data["uid"]),
            email=data.get("email"),
            display_name=data.get("display_name"),
            photo_url=data.get("photo_url"),
        )


DEMO_PROFILE = UserProfile(
    uid=DEMO_USER_ID,
    email="guest@example.com",
    display_name="Guest",
    photo_url=None,
)


class IdentityError(Exception):
    """Raised by identity providers when credentials or accounts are rejected."""


AuthListener = Callable[[Optional[UserProfile]], None]


class IdentityProvider(ABC):
    """
    External identity provider.

    The application only consumes these capabilities; password handling and
    token issuance belong to the provider.
    """

    @abstractmethod
    async def sign_up(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> UserProfile: ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> UserProfile: ...

    @abstractmethod
    async def sign_out(self, uid: str) -> None: ...

    @abstractmethod
    async def get_user(self, uid: str) -> Optional[UserProfile]: ...

    @abstractmethod
    async def update_profile(
        self,
        uid: str,
        *,
        display_name: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> UserProfile: ...

    @abstractmethod
    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        """Register ``listener``; returns a handle that unregisters it."""


class DemoSessionStore:
    """The demo identity marker kept in local storage."""

    def __init__(self, storage: LocalStorage, key: str = DEMO_SESSION_KEY) -> None:
        self.storage = storage
        self.key = key

    def load(self) -> Optional[UserProfile]:
        raw = self.storage.get_item(self.key)
        if not raw:
            return None
        try:
            return UserProfile.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable demo session marker")
            self.storage.remove_item(self.key)
            return None

    def _save(self, profile: UserProfile) -> None:
        self.storage.set_item(self.key, json.dumps(profile.to_dict()))

    def start(self) -> UserProfile:
        profile = self.load()
        if profile is None:
            profile = DEMO_PROFILE
            self._save(profile)
            logger.info("demo_session_started")
        return profile

    def update(
        self, *, display_name: Optional[str] = None, photo_url: Optional[str] = None
    ) -> UserProfile:
        profile = self.load() or DEMO_PROFILE
        changes: dict[str, str] = {}
        if display_name is not None:
            changes["display_name"] = display_name
        if photo_url is not None:
            changes["photo_url"] = photo_url
        profile = replace(profile, **changes)
        self._save(profile)
        return profile

    def end(self) -> None:
        self.storage.remove_item(self.key)
        logger.info("demo_session_ended")
