"""
Shared fixtures and store fakes for the list client tests.
"""
from __future__ import annotations

import asyncio
from typing import Any, List, Mapping, Optional, Sequence, Set

import pytest

from sharedlist.errors import RemoteStoreError
from sharedlist.nicknames import NicknameResolver
from sharedlist.preferences import InMemoryPreferenceStore
from sharedlist.settings import get_settings
from sharedlist.store import LISTS_COLLECTION, DocumentSnapshot, FieldFilter, InMemoryDocumentStore
from sharedlist.viewmodel import ListViewModel

# Short settle delay so reorder tests do not wait half a second.
TEST_SETTLE_DELAY = 0.05


class FlakyStore(InMemoryDocumentStore):
    """In-memory store that can be told to fail particular operations."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_updates = False
        self.fail_deletes = False
        self.fail_adds = False
        self.fail_queries = False
        self.failing_docs: Set[str] = set()
        self.updates: List[tuple] = []
        self.queries: List[tuple] = []
        self._held: Optional[asyncio.Event] = None

    def hold_next_update(self) -> asyncio.Event:
        """Block the next update until the returned event is set, then fail it."""
        self._held = asyncio.Event()
        return self._held

    async def update_document(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        self.updates.append((collection, doc_id, dict(fields)))
        held, self._held = self._held, None
        if held is not None:
            await held.wait()
            raise RemoteStoreError("simulated timeout")
        if self.fail_updates or doc_id in self.failing_docs:
            raise RemoteStoreError("simulated network failure")
        await super().update_document(collection, doc_id, fields)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        if self.fail_deletes or doc_id in self.failing_docs:
            raise RemoteStoreError("simulated network failure")
        await super().delete_document(collection, doc_id)

    async def add_document(self, collection: str, data: Mapping[str, Any]) -> str:
        if self.fail_adds:
            raise RemoteStoreError("simulated network failure")
        return await super().add_document(collection, data)

    async def get_document(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        if doc_id in self.failing_docs:
            raise RemoteStoreError("simulated network failure")
        return await super().get_document(collection, doc_id)

    async def query(self, collection: str, filters: Sequence[FieldFilter]) -> List[DocumentSnapshot]:
        self.queries.append((collection, tuple(filters)))
        if self.fail_queries:
            raise RemoteStoreError("simulated network failure")
        return await super().query(collection, filters)


def list_document(
    title: str,
    members: Sequence[str],
    share_code: str = "",
    todos: Optional[List[dict]] = None,
) -> dict:
    return {
        "title": title,
        "isCompleted": False,
        "todos": todos or [],
        "shareCode": share_code,
        "sharedUserIDs": list(members),
    }


async def settle() -> None:
    """Let scheduled snapshot deliveries and background tasks run."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def prefs() -> InMemoryPreferenceStore:
    return InMemoryPreferenceStore()


@pytest.fixture
def view_model(store: FlakyStore, prefs: InMemoryPreferenceStore) -> ListViewModel:
    settings = get_settings()
    return ListViewModel(
        store,
        prefs,
        nicknames=NicknameResolver(store),
        settings=settings,
        settle_delay=TEST_SETTLE_DELAY,
    )


@pytest.fixture
def seed_list(store: FlakyStore):
    """Write a list document straight into the store and return its id."""

    async def _seed(
        title: str,
        members: Sequence[str],
        share_code: str = "",
        todos: Optional[List[dict]] = None,
    ) -> str:
        return await store.add_document(LISTS_COLLECTION, list_document(title, members, share_code, todos))

    return _seed
