import pytest

from sharedlist.errors import InvalidInputError, RemoteStoreError
from sharedlist.nicknames import NicknameResolver
from sharedlist.session import AuthSession
from sharedlist.store import LISTS_COLLECTION, PROFILES_COLLECTION

from conftest import settle


@pytest.fixture
def session(store, prefs):
    return AuthSession(store, prefs, NicknameResolver(store))


class TestAuthSession:
    @pytest.mark.asyncio
    async def test_sign_in_persists_and_pulls_nickname(self, session, store, prefs):
        await store.set_document(PROFILES_COLLECTION, "u1", {"nickname": "Jiho"})

        await session.sign_in(" u1 ", "u1@example.com")

        assert session.is_authenticated is True
        assert session.user_id == "u1"
        assert session.nickname == "Jiho"
        assert session.is_nickname_set is True
        assert prefs.get("userID") == "u1"
        assert prefs.get("isAuthenticated") is True

    @pytest.mark.asyncio
    async def test_sign_in_requires_user_id(self, session):
        with pytest.raises(InvalidInputError):
            await session.sign_in("  ")
        assert session.is_authenticated is False

    @pytest.mark.asyncio
    async def test_set_nickname_trims_and_writes_profile(self, session, store):
        await session.sign_in("u1")
        await session.set_nickname("  Minji  ")

        assert session.nickname == "Minji"
        doc = await store.get_document(PROFILES_COLLECTION, "u1")
        assert doc.data == {"nickname": "Minji"}

    @pytest.mark.asyncio
    async def test_blank_nickname_rejected(self, session):
        await session.sign_in("u1")
        with pytest.raises(InvalidInputError):
            await session.set_nickname("   ")
        assert session.error_message == "Enter a nickname."
        assert session.is_nickname_set is False

    @pytest.mark.asyncio
    async def test_nickname_kept_locally_when_remote_write_fails(self, session, store, monkeypatch):
        await session.sign_in("u1")

        async def failing_set(*args, **kwargs):
            raise RemoteStoreError("offline")

        monkeypatch.setattr(store, "set_document", failing_set)
        await session.set_nickname("Jiho")
        assert session.nickname == "Jiho"

    @pytest.mark.asyncio
    async def test_restore_pushes_local_nickname(self, store, prefs):
        first = AuthSession(store, prefs)
        await first.sign_in("u1")
        await first.set_nickname("Jiho")
        await store.set_document(PROFILES_COLLECTION, "u1", {"nickname": "Stale"})

        restored = AuthSession(store, prefs)
        await restored.restore()

        assert restored.is_authenticated is True
        assert restored.user_id == "u1"
        assert restored.nickname == "Jiho"
        assert (await store.get_document(PROFILES_COLLECTION, "u1")).data["nickname"] == "Jiho"

    @pytest.mark.asyncio
    async def test_sign_out_clears_state(self, session, prefs):
        await session.sign_in("u1")
        await session.set_nickname("Jiho")

        session.sign_out()

        assert session.is_authenticated is False
        assert session.user_id == ""
        assert prefs.get("userID") is None
        assert prefs.get("nickname") is None
        assert prefs.get("isNicknameSet") is False

    @pytest.mark.asyncio
    async def test_delete_account_leaves_lists(self, session, store, prefs, view_model, seed_list):
        await session.sign_in("u1")
        solo = await seed_list("Solo", ["u1"])
        view_model.observe_lists("u1")
        await settle()

        await session.delete_account(view_model)

        assert await store.get_document(LISTS_COLLECTION, solo) is None
        assert session.user_id == ""
        assert prefs.get("isAuthenticated") is None
        assert view_model.list_items == ()
