import time
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from sharedlist.main import create_app
from sharedlist.preferences import InMemoryPreferenceStore
from sharedlist.services import Services
from sharedlist.store import InMemoryDocumentStore


def wait_for(predicate, timeout=2.0):
    """Poll until snapshot callbacks on the app's loop have caught up."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def services():
    return Services.build(store=InMemoryDocumentStore(), preferences=InMemoryPreferenceStore())


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as c:
        yield c


@pytest.fixture
def signed_in(client):
    res = client.post("/api/v1/session/", json={"user_id": "u1", "email": "u1@example.com"})
    assert res.status_code == 200
    return client


def lists_of(client):
    res = client.get("/api/v1/lists/")
    assert res.status_code == 200
    return res.json()


def create_list(client, title="Groceries", **extra):
    res = client.post("/api/v1/lists/", json={"title": title, **extra})
    assert res.status_code == 201
    list_id = res.json()["id"]
    assert wait_for(lambda: any(i["id"] == list_id for i in lists_of(client)["items"]))
    return list_id


def get_list(client, list_id):
    return next(i for i in lists_of(client)["items"] if i["id"] == list_id)


class TestHealth:
    def test_health_check(self, client):
        res = client.get("/")
        assert res.status_code == 200
        data = res.json()
        assert data["message"] == "Healthy"
        assert data["preferences"] in ("memory", "sqlite")


class TestSessionApi:
    def test_lists_require_sign_in(self, client):
        res = client.get("/api/v1/lists/")
        assert res.status_code == 401
        assert res.json()["error"] == "NotSignedIn"

    def test_sign_in_and_out(self, client):
        res = client.post("/api/v1/session/", json={"user_id": "u1"})
        assert res.status_code == 200
        assert res.json()["is_authenticated"] is True
        assert res.json()["user_id"] == "u1"

        assert client.delete("/api/v1/session/").status_code == 204
        assert client.get("/api/v1/session/").json()["is_authenticated"] is False
        assert client.get("/api/v1/lists/").status_code == 401

    def test_set_nickname(self, signed_in, services):
        res = signed_in.put("/api/v1/session/nickname", json={"nickname": "  Jiho "})
        assert res.status_code == 200
        assert res.json()["nickname"] == "Jiho"
        assert res.json()["is_nickname_set"] is True

        names = signed_in.get("/api/v1/profiles/nicknames", params={"ids": ["u1", "nobody"]})
        assert names.status_code == 200
        assert names.json()["nicknames"] == {"u1": "Jiho"}

    def test_blank_nickname_rejected(self, signed_in):
        res = signed_in.put("/api/v1/session/nickname", json={"nickname": "   "})
        assert res.status_code == 422

    def test_delete_account(self, signed_in, services):
        list_id = create_list(signed_in, "Solo")
        assert signed_in.delete("/api/v1/session/account").status_code == 204
        assert services.store._docs("lists").get(list_id) is None
        assert signed_in.get("/api/v1/session/").json()["user_id"] == ""


class TestListsApi:
    def test_create_and_list(self, signed_in):
        list_id = create_list(signed_in, "Trip", subtitle="Packing", due_date="2099-12-25")
        item = get_list(signed_in, list_id)
        assert item["title"] == "Trip"
        assert item["subtitle"] == "Packing"
        assert item["shared_user_ids"] == ["u1"]
        assert item["progress"] == 0.0
        assert item["due_date"].startswith("2099-12-25")
        datetime.fromisoformat(item["due_date"])
        assert len(item["share_code"]) == 7

    def test_create_validation_error(self, signed_in):
        res = signed_in.post("/api/v1/lists/", json={"title": ""})
        assert res.status_code == 422
        body = res.json()
        assert body["error"] == "ValidationError"

    def test_update_list(self, signed_in):
        list_id = create_list(signed_in, "Old", subtitle="gone soon")
        res = signed_in.patch(f"/api/v1/lists/{list_id}", json={"title": "New"})
        assert res.status_code == 204
        item = get_list(signed_in, list_id)
        assert item["title"] == "New"
        assert item["subtitle"] is None

    def test_todos_lifecycle(self, signed_in):
        list_id = create_list(signed_in)

        res = signed_in.post(f"/api/v1/lists/{list_id}/todos", json={"title": "Milk"})
        assert res.status_code == 201
        milk = res.json()
        assert milk["is_completed"] is False
        eggs = signed_in.post(f"/api/v1/lists/{list_id}/todos", json={"title": "Eggs"}).json()

        res = signed_in.post(f"/api/v1/lists/{list_id}/todos/{milk['id']}/toggle")
        assert res.status_code == 200
        assert res.json() == {"is_completed": True}
        assert get_list(signed_in, list_id)["progress"] == 0.5

        res = signed_in.patch(
            f"/api/v1/lists/{list_id}/todos/{eggs['id']}", json={"title": "Free-range eggs"}
        )
        assert res.status_code == 200
        assert res.json()["title"] == "Free-range eggs"

        res = signed_in.put(
            f"/api/v1/lists/{list_id}/todos/order", json={"todo_ids": [eggs["id"], milk["id"]]}
        )
        assert res.status_code == 204
        assert [t["id"] for t in get_list(signed_in, list_id)["todos"]] == [eggs["id"], milk["id"]]

        res = signed_in.post(f"/api/v1/lists/{list_id}/todos/delete", json={"todo_ids": [milk["id"]]})
        assert res.status_code == 200
        assert res.json() == {"removed": 1}

    def test_unknown_list_and_todo(self, signed_in):
        res = signed_in.post("/api/v1/lists/missing/todos", json={"title": "Milk"})
        assert res.status_code == 404
        assert res.json()["error"] == "NotFound"

        list_id = create_list(signed_in)
        res = signed_in.post(f"/api/v1/lists/{list_id}/todos/missing/toggle")
        assert res.status_code == 404

    def test_reorder_lists(self, signed_in):
        a = create_list(signed_in, "A")
        b = create_list(signed_in, "B")
        res = signed_in.put("/api/v1/lists/order", json={"list_ids": [b, a]})
        assert res.status_code == 200
        body = res.json()
        assert [i["id"] for i in body["items"]] == [b, a]
        assert body["reordering"] is True
        assert wait_for(lambda: lists_of(signed_in)["reordering"] is False)
        assert [i["id"] for i in lists_of(signed_in)["items"]] == [b, a]

    def test_reorder_lists_rejects_partial_order(self, signed_in):
        a = create_list(signed_in, "A")
        create_list(signed_in, "B")
        res = signed_in.put("/api/v1/lists/order", json={"list_ids": [a]})
        assert res.status_code == 422

    def test_complete_list(self, signed_in, services):
        list_id = create_list(signed_in)
        res = signed_in.post(f"/api/v1/lists/{list_id}/complete")
        assert res.status_code == 204
        assert lists_of(signed_in)["items"] == []
        assert services.store._docs("lists").get(list_id) is None

    def test_join_and_leave(self, client, services):
        client.post("/api/v1/session/", json={"user_id": "owner"})
        list_id = create_list(client, "Shared")
        code = get_list(client, list_id)["share_code"]

        client.post("/api/v1/session/", json={"user_id": "guest"})
        res = client.post("/api/v1/lists/join", json={"code": code.lower()})
        assert res.status_code == 200
        assert res.json() == {"id": list_id}
        assert wait_for(lambda: any(i["id"] == list_id for i in lists_of(client)["items"]))
        assert get_list(client, list_id)["shared_user_ids"] == ["owner", "guest"]

        res = client.post("/api/v1/lists/join", json={"code": code})
        assert res.status_code == 409
        assert res.json()["error"] == "Conflict"

        res = client.post("/api/v1/lists/leave", json={"list_ids": [list_id]})
        assert res.status_code == 200
        assert res.json() == {"left": [list_id]}
        assert services.store._docs("lists")[list_id]["sharedUserIDs"] == ["owner"]

    def test_non_member_cannot_rename_or_complete(self, client, services):
        client.post("/api/v1/session/", json={"user_id": "owner"})
        list_id = create_list(client, "Private")

        client.post("/api/v1/session/", json={"user_id": "stranger"})
        res = client.patch(f"/api/v1/lists/{list_id}", json={"title": "hijacked"})
        assert res.status_code == 404
        res = client.post(f"/api/v1/lists/{list_id}/complete")
        assert res.status_code == 404

        assert services.store._docs("lists")[list_id]["title"] == "Private"

    def test_join_invalid_code(self, signed_in):
        res = signed_in.post("/api/v1/lists/join", json={"code": "NOP-000"})
        assert res.status_code == 404
        assert res.json()["message"] == "Invalid invite code."
