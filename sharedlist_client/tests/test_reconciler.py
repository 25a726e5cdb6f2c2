import asyncio

import pytest

from sharedlist.models import ListItem
from sharedlist.preferences import InMemoryPreferenceStore, load_list_order, save_list_order
from sharedlist.reconciler import OrderReconciler, ReconcileResult, reconcile
from sharedlist.store import DocumentSnapshot

from conftest import list_document


def make_list(list_id: str, title: str = "") -> ListItem:
    return ListItem(id=list_id, title=title or f"List {list_id}", shared_user_ids=("u1",))


def ids(result: ReconcileResult):
    return [item.id for item in result.ordered]


def doc(list_id: str, title: str = "") -> DocumentSnapshot:
    return DocumentSnapshot(id=list_id, data=list_document(title or f"List {list_id}", ["u1"]))


class TestReconcile:
    def test_cached_order_then_new_entities(self):
        # C = [B, A], S = {A, B, D} with D new
        live = [make_list("A"), make_list("B"), make_list("D")]
        result = reconcile(live, ["B", "A"])
        assert ids(result) == ["B", "A", "D"]
        assert list(result.order) == ["B", "A", "D"]

    def test_absent_entities_keep_snapshot_order(self):
        live = [make_list("X"), make_list("A"), make_list("Y"), make_list("B")]
        result = reconcile(live, ["B", "A"])
        assert ids(result) == ["B", "A", "X", "Y"]

    def test_no_cached_order_uses_snapshot_order(self):
        live = [make_list("C"), make_list("A"), make_list("B")]
        result = reconcile(live, None)
        assert ids(result) == ["C", "A", "B"]
        assert list(result.order) == ["C", "A", "B"]

    def test_every_entity_returned_exactly_once(self):
        live = [make_list(i) for i in "EDCBA"]
        result = reconcile(live, ["A", "Z", "C"])
        assert sorted(ids(result)) == sorted("ABCDE")
        assert len(ids(result)) == 5
        assert ids(result)[:2] == ["A", "C"]

    def test_prunes_ids_no_longer_live(self):
        live = [make_list("A"), make_list("B")]
        result = reconcile(live, ["GONE", "B", "A", "ALSO_GONE"])
        assert "GONE" not in result.order
        assert "ALSO_GONE" not in result.order
        assert list(result.order) == ["B", "A"]

    def test_duplicates_keep_first_seen(self):
        first = make_list("A", "first")
        second = make_list("A", "second")
        result = reconcile([first, make_list("B"), second], None)
        assert ids(result) == ["A", "B"]
        assert result.ordered[0].title == "first"

    def test_idempotent(self):
        live = [make_list("A"), make_list("B"), make_list("D")]
        cached = ["B", "GONE", "A"]
        first = reconcile(live, cached)
        second = reconcile(live, cached)
        assert first == second

    def test_reordering_returns_previous_unchanged(self):
        previous = reconcile([make_list("A"), make_list("B")], ["B", "A"])
        result = reconcile([make_list("Q")], ["A", "B"], reordering=True, previous=previous)
        assert result is previous

    def test_reordering_without_previous_is_empty(self):
        result = reconcile([make_list("A")], ["A"], reordering=True)
        assert result.ordered == ()
        assert list(result.order) == ["A"]


class TestOrderReconciler:
    def test_apply_snapshot_persists_pruned_order(self):
        prefs = InMemoryPreferenceStore()
        save_list_order(prefs, "u1", ["B", "GONE", "A"])
        reconciler = OrderReconciler(prefs)
        reconciler.load("u1")

        result = reconciler.apply_snapshot([doc("A"), doc("B")])

        assert ids(result) == ["B", "A"]
        assert load_list_order(prefs, "u1") == ["B", "A"]
        assert reconciler.order_cache == ("B", "A")

    def test_malformed_documents_are_skipped_individually(self):
        reconciler = OrderReconciler(InMemoryPreferenceStore())
        reconciler.load("u1")
        bad_title = DocumentSnapshot(id="BAD", data={"title": "   ", "sharedUserIDs": ["u1"]})
        bad_shape = DocumentSnapshot(id="WORSE", data={"title": "x", "todos": "nope"})
        result = reconciler.apply_snapshot([doc("A"), bad_title, bad_shape, doc("B")])
        assert ids(result) == ["A", "B"]

    def test_lists_without_members_are_skipped(self):
        reconciler = OrderReconciler(InMemoryPreferenceStore())
        reconciler.load("u1")
        no_members = DocumentSnapshot(id="ORPHAN", data={"title": "Orphan", "todos": []})
        empty_members = DocumentSnapshot(id="EMPTY", data=list_document("Empty", []))
        result = reconciler.apply_snapshot([no_members, doc("A"), empty_members])
        assert ids(result) == ["A"]

    def test_malformed_todo_does_not_drop_list(self):
        reconciler = OrderReconciler(InMemoryPreferenceStore())
        reconciler.load("u1")
        data = list_document("Groceries", ["u1"], todos=[{"id": "t1", "title": "Milk"}, {"id": "t2"}, "junk"])
        result = reconciler.apply_snapshot([DocumentSnapshot(id="A", data=data)])
        assert ids(result) == ["A"]
        assert [t.id for t in result.ordered[0].todos] == ["t1"]

    @pytest.mark.asyncio
    async def test_snapshot_during_reorder_is_held_back(self):
        prefs = InMemoryPreferenceStore()
        reconciler = OrderReconciler(prefs, settle_delay=0.05)
        reconciler.load("u1")
        reconciler.apply_snapshot([doc("A"), doc("B")])

        reconciler.begin_reorder()
        assert reconciler.apply_snapshot([doc("A"), doc("B"), doc("C")]) is None

        committed = reconciler.commit_reorder(["B", "A"], "u1")
        assert ids(committed) == ["B", "A"]
        assert load_list_order(prefs, "u1") == ["B", "A"]
        # Still inside the settle window.
        assert reconciler.apply_snapshot([doc("A"), doc("B")]) is None
        assert reconciler.reordering is True

        replayed = []
        reconciler.on_settled = replayed.append
        await asyncio.sleep(0.1)

        assert reconciler.reordering is False
        assert len(replayed) == 1
        assert ids(replayed[0]) == ["B", "A"]

    @pytest.mark.asyncio
    async def test_second_commit_rearms_timer(self):
        reconciler = OrderReconciler(InMemoryPreferenceStore(), settle_delay=0.2)
        reconciler.load("u1")
        reconciler.begin_reorder()
        reconciler.commit_reorder(["A"], "u1")
        await asyncio.sleep(0.1)
        reconciler.begin_reorder()
        reconciler.commit_reorder(["B", "A"], "u1")
        await asyncio.sleep(0.1)
        # The first timer would have fired by now.
        assert reconciler.reordering is True
        await asyncio.sleep(0.2)
        assert reconciler.reordering is False
        assert reconciler.order_cache == ("B", "A")

    def test_forget_removes_from_cache_and_storage(self):
        prefs = InMemoryPreferenceStore()
        reconciler = OrderReconciler(prefs)
        reconciler.load("u1")
        reconciler.apply_snapshot([doc("A"), doc("B"), doc("C")])

        reconciler.forget(["B"], "u1")

        assert reconciler.order_cache == ("A", "C")
        assert load_list_order(prefs, "u1") == ["A", "C"]
        assert ids(reconciler.last_result) == ["A", "C"]

    def test_reset_clears_stored_order(self):
        prefs = InMemoryPreferenceStore()
        reconciler = OrderReconciler(prefs)
        reconciler.load("u1")
        reconciler.apply_snapshot([doc("A")])
        reconciler.reset("u1")
        assert reconciler.order_cache is None
        assert load_list_order(prefs, "u1") is None
