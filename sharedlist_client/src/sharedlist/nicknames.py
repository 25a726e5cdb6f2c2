from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from .errors import RemoteStoreError
from .settings import MAX_IN_QUERY_VALUES
from .store import DOCUMENT_ID, PROFILES_COLLECTION, DocumentStore, FieldFilter
from .utils import chunked

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class NicknameResolver:
    """
    Resolves user ids to display nicknames with a process-lifetime cache.

    Lookups are batched because the profile query's "in" predicate accepts
    at most 10 ids. Cached names are never invalidated.
    """

    def __init__(self, store: DocumentStore, batch_size: int = MAX_IN_QUERY_VALUES) -> None:
        self._store = store
        self._batch_size = min(max(batch_size, 1), MAX_IN_QUERY_VALUES)
        self._cache: Dict[str, str] = {}

    def display_name(self, user_id: str) -> Optional[str]:
        return self._cache.get(user_id)

    def remember(self, user_id: str, nickname: str) -> None:
        if user_id and nickname:
            self._cache[user_id] = nickname

    def names_for(self, user_ids: Iterable[str]) -> Dict[str, str]:
        return {uid: self._cache[uid] for uid in user_ids if uid in self._cache}

    async def ensure_nicknames(self, user_ids: Iterable[str]) -> int:
        """
        Fetch nicknames for every id not cached yet. Returns the number of
        batch queries issued. A failed batch is logged and skipped.
        """
        missing = [uid for uid in dict.fromkeys(user_ids) if uid and uid not in self._cache]
        queries = 0
        for batch in chunked(missing, self._batch_size):
            queries += 1
            try:
                documents = await self._store.query(
                    PROFILES_COLLECTION, [FieldFilter(DOCUMENT_ID, "in", batch)]
                )
            except RemoteStoreError as exc:
                logger.warning("Nickname lookup failed for %d users: %s", len(batch), exc.message)
                continue
            for doc in documents:
                nickname = doc.data.get("nickname")
                if isinstance(nickname, str) and nickname:
                    self._cache[doc.id] = nickname
        return queries
