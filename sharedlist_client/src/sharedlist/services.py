from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from .nicknames import NicknameResolver
from .preferences import PreferenceStore, get_preference_store
from .session import AuthSession
from .settings import Settings, get_settings
from .store import DocumentStore, InMemoryDocumentStore
from .viewmodel import ListViewModel

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything one running client needs, wired together once per app."""

    settings: Settings
    store: DocumentStore
    preferences: PreferenceStore
    nicknames: NicknameResolver
    session: AuthSession
    lists: ListViewModel

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[DocumentStore] = None,
        preferences: Optional[PreferenceStore] = None,
    ) -> "Services":
        settings = settings or get_settings()
        store = store or InMemoryDocumentStore()
        preferences = preferences or get_preference_store(settings)
        nicknames = NicknameResolver(store, settings.nickname_batch_size)
        return cls(
            settings=settings,
            store=store,
            preferences=preferences,
            nicknames=nicknames,
            session=AuthSession(store, preferences, nicknames),
            lists=ListViewModel(store, preferences, nicknames=nicknames, settings=settings),
        )

    async def start(self) -> None:
        """Restore the persisted session and resume observing its lists."""
        await self.session.restore()
        if self.session.is_authenticated and self.session.user_id:
            logger.info("Resuming session for user %s", self.session.user_id)
            self.lists.observe_lists(self.session.user_id)

    async def stop(self) -> None:
        self.lists.close()


# PUBLIC_INTERFACE
def get_services(request: Request) -> Services:
    """FastAPI dependency returning the app's Services bundle."""
    return request.app.state.services
