from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from .errors import InvalidInputError, RemoteStoreError
from .nicknames import NicknameResolver
from .preferences import PreferenceStore
from .store import PROFILES_COLLECTION, DocumentStore

if TYPE_CHECKING:
    from .viewmodel import ListViewModel

logger = logging.getLogger(__name__)

KEY_AUTHENTICATED = "isAuthenticated"
KEY_USER_ID = "userID"
KEY_EMAIL = "userEmail"
KEY_NICKNAME = "nickname"
KEY_NICKNAME_SET = "isNicknameSet"

_SESSION_KEYS = (KEY_AUTHENTICATED, KEY_USER_ID, KEY_EMAIL, KEY_NICKNAME, KEY_NICKNAME_SET)


# PUBLIC_INTERFACE
class AuthSession:
    """
    Sign-in state of this device.

    The sign-in provider itself is external: it hands over a stable, opaque
    user id and optionally an email. The nickname is kept locally and
    mirrored to ``userProfiles/<userID>`` so other members can see it.
    """

    def __init__(
        self,
        store: DocumentStore,
        preferences: PreferenceStore,
        nicknames: Optional[NicknameResolver] = None,
    ) -> None:
        self._store = store
        self._prefs = preferences
        self._nicknames = nicknames
        self.is_authenticated = False
        self.user_id = ""
        self.user_email = ""
        self.nickname = ""
        self.is_nickname_set = False
        self.error_message: Optional[str] = None

    async def restore(self) -> None:
        """Load persisted state and reconcile the nickname with the profile store."""
        self.is_authenticated = bool(self._prefs.get(KEY_AUTHENTICATED))
        self.user_id = self._prefs.get(KEY_USER_ID) or ""
        self.user_email = self._prefs.get(KEY_EMAIL) or ""
        self.nickname = self._prefs.get(KEY_NICKNAME) or ""
        self.is_nickname_set = bool(self._prefs.get(KEY_NICKNAME_SET))

        if not (self.is_authenticated and self.user_id):
            return
        if self.nickname:
            await self._push_nickname(self.nickname)
        else:
            await self._pull_nickname()

    async def sign_in(self, user_id: str, email: Optional[str] = None) -> None:
        user_id = (user_id or "").strip()
        if not user_id:
            self.error_message = "Sign in failed."
            raise InvalidInputError(self.error_message)

        if user_id != self.user_id:
            self._cache_nickname("")
        self.user_id = user_id
        if email:
            self.user_email = email
        self.is_authenticated = True
        self.error_message = None

        self._prefs.set(KEY_AUTHENTICATED, True)
        self._prefs.set(KEY_USER_ID, self.user_id)
        self._prefs.set(KEY_EMAIL, self.user_email)
        logger.info("Signed in user %s", user_id)

        await self._pull_nickname()

    async def set_nickname(self, nickname: str) -> None:
        trimmed = (nickname or "").strip()
        if not trimmed:
            self.error_message = "Enter a nickname."
            raise InvalidInputError(self.error_message)

        self._cache_nickname(trimmed)
        self.error_message = None
        await self._push_nickname(trimmed)

    def sign_out(self) -> None:
        self._prefs.set(KEY_AUTHENTICATED, False)
        for key in (KEY_USER_ID, KEY_NICKNAME, KEY_EMAIL):
            self._prefs.remove(key)
        self._prefs.set(KEY_NICKNAME_SET, False)

        self.is_authenticated = False
        self.user_id = ""
        self.user_email = ""
        self.nickname = ""
        self.is_nickname_set = False
        logger.info("Signed out")

    async def delete_account(self, lists: "ListViewModel") -> None:
        """Leave every list, then wipe all local session data."""
        await lists.delete_all_data(self.user_id)

        for key in _SESSION_KEYS:
            self._prefs.remove(key)
        self.is_authenticated = False
        self.user_id = ""
        self.user_email = ""
        self.nickname = ""
        self.is_nickname_set = False
        self.error_message = None
        logger.info("Deleted account data")

    def _cache_nickname(self, nickname: str) -> None:
        self.nickname = nickname
        self.is_nickname_set = bool(nickname)
        self._prefs.set(KEY_NICKNAME, nickname)
        self._prefs.set(KEY_NICKNAME_SET, self.is_nickname_set)
        if self._nicknames is not None and nickname:
            self._nicknames.remember(self.user_id, nickname)

    async def _pull_nickname(self) -> None:
        if self.nickname or not self.user_id:
            return
        try:
            doc = await self._store.get_document(PROFILES_COLLECTION, self.user_id)
        except RemoteStoreError as exc:
            logger.warning("Nickname sync failed: %s", exc.message)
            return
        remote = doc.data.get("nickname") if doc is not None else None
        if isinstance(remote, str) and remote:
            self._cache_nickname(remote)

    async def _push_nickname(self, nickname: str) -> None:
        if not self.user_id:
            return
        try:
            await self._store.set_document(PROFILES_COLLECTION, self.user_id, {"nickname": nickname}, merge=True)
        except RemoteStoreError as exc:
            logger.warning("Nickname save failed: %s", exc.message)
