"""
State of the signed in user's lists and the mutating operations on them.

All entry points are expected to run on one asyncio event loop, which
serializes mutations of the presentation state. Mutations are applied
locally first and written remotely next. If the remote write fails, only
that mutation's change is undone, on the list as it is at that moment, so
overlapping mutations and delivered snapshots are kept. The live
subscription later confirms the same state.

Mutators only act on lists currently shown, i.e. lists the user is a
member of.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Coroutine, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .errors import ConflictError, InvalidInputError, NotFoundError, RemoteStoreError, SharedListError
from .models import DueDateInput, ListItem, TodoItem, clean_title, completion_progress, parse_due_date
from .nicknames import NicknameResolver
from .preferences import PreferenceStore
from .reconciler import OrderReconciler, ReconcileResult
from .settings import Settings, get_settings
from .store import (
    DELETE_FIELD,
    LISTS_COLLECTION,
    ArrayRemove,
    ArrayUnion,
    DocumentStore,
    FieldFilter,
    QuerySnapshot,
    Subscription,
)
from .utils import generate_share_code, normalize_share_code

logger = logging.getLogger(__name__)

MSG_NO_USER = "No signed in user."
MSG_ENTER_TITLE = "Enter a title."
MSG_ENTER_CODE = "Enter an invite code."
MSG_LIST_NOT_FOUND = "List not found."
MSG_TODO_NOT_FOUND = "Todo not found."
MSG_INVALID_CODE = "Invalid invite code."
MSG_ALREADY_JOINED = "You have already joined this list."
MSG_LOADING_LISTS = "Could not load lists."
MSG_SHARE_CODE = "Could not generate a share code."
MSG_CREATING_LIST = "Could not create the list."
MSG_UPDATING_LIST = "Could not update the list."
MSG_COMPLETING_LIST = "Could not complete the list."
MSG_JOINING_LIST = "Could not join the list."
MSG_ADDING_TODO = "Could not add the todo."
MSG_UPDATING_TODO = "Could not update the todo."
MSG_REORDERING_TODO = "Could not reorder todos."
MSG_DELETING_TODO = "Could not delete todos."
MSG_TOGGLING_TODO = "Could not change completion."


Revert = Callable[[ListItem], ListItem]


def _clean_subtitle(subtitle: Optional[str]) -> Optional[str]:
    if subtitle is None:
        return None
    s = subtitle.strip()
    return s or None


def _map_todo(item: ListItem, todo_id: str, change: Callable[[TodoItem], TodoItem]) -> ListItem:
    return item.model_copy(update={"todos": tuple(change(t) if t.id == todo_id else t for t in item.todos)})


def _without_todo(item: ListItem, todo_id: str) -> ListItem:
    return item.model_copy(update={"todos": tuple(t for t in item.todos if t.id != todo_id)})


def _restore_order(item: ListItem, previous_ids: Sequence[str]) -> ListItem:
    """
    Sort the todos still present back into ``previous_ids`` order. Todos
    unknown to that order keep their relative order at the end.
    """
    position = {todo_id: i for i, todo_id in enumerate(previous_ids)}
    ordered = sorted(item.todos, key=lambda t: position.get(t.id, len(position)))
    return item.model_copy(update={"todos": tuple(ordered)})


def _reinsert_todos(item: ListItem, removed: Sequence[Tuple[int, TodoItem]]) -> ListItem:
    """Put deleted todos back at their former indexes unless already present."""
    todos = list(item.todos)
    present = {t.id for t in todos}
    for index, todo in removed:
        if todo.id not in present:
            todos.insert(min(index, len(todos)), todo)
    return item.model_copy(update={"todos": tuple(todos)})


# PUBLIC_INTERFACE
class ListViewModel:
    """
    Observable list state for one signed in user.

    Public attributes read by the presentation layer:
    - list_items: lists in display order
    - is_loading: a network operation is in progress
    - error_message: last user facing error, or None
    """

    def __init__(
        self,
        store: DocumentStore,
        preferences: PreferenceStore,
        nicknames: Optional[NicknameResolver] = None,
        settings: Optional[Settings] = None,
        settle_delay: Optional[float] = None,
    ) -> None:
        settings = settings or get_settings()
        self._store = store
        self._prefs = preferences
        self._share_code_length = settings.share_code_length
        self._share_code_attempts = settings.share_code_attempts
        self.nicknames = nicknames or NicknameResolver(store, settings.nickname_batch_size)
        self.reconciler = OrderReconciler(
            preferences,
            settings.reorder_settle_delay if settle_delay is None else settle_delay,
        )
        self.reconciler.on_settled = self._show

        self.list_items: Tuple[ListItem, ...] = ()
        self.is_loading = False
        self.error_message: Optional[str] = None
        self.user_id: Optional[str] = None

        self._subscription: Optional[Subscription] = None
        self._background: Set["asyncio.Task[Any]"] = set()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def is_observing(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def observe_lists(self, user_id: str) -> None:
        """Subscribe to every list the user is a member of."""
        self.stop_observing()

        if not user_id:
            self.list_items = ()
            self.user_id = None
            return

        if user_id != self.user_id:
            self.list_items = ()
        self.user_id = user_id
        self.reconciler.load(user_id)
        self.is_loading = True
        self._subscription = self._store.subscribe(
            LISTS_COLLECTION,
            [FieldFilter("sharedUserIDs", "array_contains", user_id)],
            self._on_snapshot,
        )

    def stop_observing(self) -> None:
        if self._subscription is not None:
            self._subscription.remove()
            self._subscription = None

    def _on_snapshot(self, snapshot: Optional[QuerySnapshot], error: Optional[Exception]) -> None:
        if error is not None:
            logger.warning("List subscription error: %s", error)
            self.error_message = MSG_LOADING_LISTS
            self.is_loading = False
            return

        if snapshot is None:
            self.is_loading = False
            return

        result = self.reconciler.apply_snapshot(snapshot.documents)
        if result is None:
            return
        self._show(result)

    def _show(self, result: ReconcileResult) -> None:
        self.list_items = result.ordered
        self.is_loading = False
        self.error_message = None

        member_ids = list(dict.fromkeys(uid for item in result.ordered for uid in item.shared_user_ids))
        if member_ids:
            self._spawn(self.nicknames.ensure_nicknames(member_ids))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_background(self) -> None:
        """Wait for background nickname lookups started by snapshots."""
        while self._background:
            await asyncio.gather(*list(self._background))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fail(self, exc: SharedListError) -> SharedListError:
        self.error_message = exc.message
        return exc

    def _require_user(self, user_id: Optional[str]) -> str:
        if not user_id or not user_id.strip():
            raise self._fail(InvalidInputError(MSG_NO_USER))
        return user_id

    def _require_title(self, title: Optional[str]) -> str:
        try:
            return clean_title(title)
        except ValueError as exc:
            raise self._fail(InvalidInputError(MSG_ENTER_TITLE, detail=str(exc))) from exc

    def _due(self, value: Optional[DueDateInput]) -> Optional[datetime]:
        try:
            return parse_due_date(value)
        except ValueError as exc:
            raise self._fail(InvalidInputError(str(exc))) from exc

    def find_list(self, list_id: str) -> Optional[ListItem]:
        for item in self.list_items:
            if item.id == list_id:
                return item
        return None

    def _require_list(self, list_id: str) -> ListItem:
        item = self.find_list(list_id)
        if item is None:
            raise self._fail(NotFoundError(MSG_LIST_NOT_FOUND))
        return item

    def _require_todo(self, item: ListItem, todo_id: str) -> TodoItem:
        todo = item.find_todo(todo_id)
        if todo is None:
            raise self._fail(NotFoundError(MSG_TODO_NOT_FOUND))
        return todo

    def _replace(self, updated: ListItem) -> None:
        self.list_items = tuple(updated if item.id == updated.id else item for item in self.list_items)

    def _rollback(self, list_id: str, revert: Revert) -> None:
        # Applied to the list as it is now; later local changes and snapshots survive.
        current = self.find_list(list_id)
        if current is not None:
            self._replace(revert(current))

    async def _write(
        self,
        list_id: str,
        fields: Mapping[str, Any],
        revert: Revert,
        message: str,
    ) -> None:
        try:
            await self._store.update_document(LISTS_COLLECTION, list_id, fields)
        except RemoteStoreError as exc:
            logger.warning("%s list=%s: %s", message, list_id, exc.message)
            self._rollback(list_id, revert)
            raise self._fail(RemoteStoreError(message, detail=exc.message)) from exc

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def _unique_share_code(self) -> Optional[str]:
        for _ in range(self._share_code_attempts):
            code = generate_share_code(self._share_code_length)
            try:
                taken = await self._store.query(LISTS_COLLECTION, [FieldFilter("shareCode", "==", code)])
            except RemoteStoreError as exc:
                logger.warning("Share code check failed: %s", exc.message)
                continue
            if not taken:
                return code
        return None

    async def create_list(
        self,
        title: str,
        user_id: str,
        subtitle: Optional[str] = None,
        due_date: Optional[DueDateInput] = None,
    ) -> str:
        """
        Create a list with the caller as its only member and a fresh share
        code. The new list reaches ``list_items`` through the subscription.
        Returns the new list id.
        """
        user_id = self._require_user(user_id)
        title = self._require_title(title)
        due = self._due(due_date)

        self.is_loading = True
        try:
            share_code = await self._unique_share_code()
            if share_code is None:
                raise self._fail(RemoteStoreError(MSG_SHARE_CODE))

            item = ListItem(
                title=title,
                subtitle=_clean_subtitle(subtitle),
                due_date=due,
                share_code=share_code,
                shared_user_ids=(user_id,),
            )
            try:
                list_id = await self._store.add_document(LISTS_COLLECTION, item.to_document())
            except RemoteStoreError as exc:
                logger.warning("%s: %s", MSG_CREATING_LIST, exc.message)
                raise self._fail(RemoteStoreError(MSG_CREATING_LIST, detail=exc.message)) from exc
        finally:
            self.is_loading = False

        logger.info("Created list %s with share code %s", list_id, share_code)
        return list_id

    async def update_list(
        self,
        list_id: str,
        title: str,
        subtitle: Optional[str] = None,
        due_date: Optional[DueDateInput] = None,
    ) -> None:
        """Replace title, subtitle and due date; absent optionals are deleted remotely."""
        title = self._require_title(title)
        due = self._due(due_date)
        subtitle = _clean_subtitle(subtitle)
        previous = self._require_list(list_id)

        old = {"title": previous.title, "subtitle": previous.subtitle, "due_date": previous.due_date}
        self._replace(previous.model_copy(update={"title": title, "subtitle": subtitle, "due_date": due}))

        fields: Dict[str, Any] = {
            "title": title,
            "subtitle": subtitle if subtitle is not None else DELETE_FIELD,
            "dueDate": due if due is not None else DELETE_FIELD,
        }
        await self._write(list_id, fields, lambda cur: cur.model_copy(update=old), MSG_UPDATING_LIST)
        logger.info("Updated list %s", list_id)

    async def complete_list(self, list_id: str, user_id: str) -> None:
        """
        Delete a list the user is shown, for every member. Other members'
        membership does not matter.
        """
        user_id = self._require_user(user_id)
        previous = self._require_list(list_id)

        index = self.list_items.index(previous)
        self.list_items = tuple(item for item in self.list_items if item.id != list_id)

        try:
            await self._store.delete_document(LISTS_COLLECTION, list_id)
        except RemoteStoreError as exc:
            logger.warning("%s list=%s: %s", MSG_COMPLETING_LIST, list_id, exc.message)
            if self.find_list(list_id) is None:
                items = list(self.list_items)
                items.insert(min(index, len(items)), previous)
                self.list_items = tuple(items)
            raise self._fail(RemoteStoreError(MSG_COMPLETING_LIST, detail=exc.message)) from exc

        self.reconciler.forget([list_id], user_id)
        logger.info("Completed and deleted list %s", list_id)

    async def _leave_one(self, list_id: str, user_id: str) -> bool:
        try:
            doc = await self._store.get_document(LISTS_COLLECTION, list_id)
            if doc is None:
                logger.warning("List %s not found while leaving", list_id)
                return False
            members = doc.data.get("sharedUserIDs")
            if not isinstance(members, list):
                logger.warning("List %s has no member array", list_id)
                return False

            remaining = [m for m in members if m != user_id]
            if not remaining:
                await self._store.delete_document(LISTS_COLLECTION, list_id)
                logger.info("Deleted list %s (no members left)", list_id)
            else:
                await self._store.update_document(
                    LISTS_COLLECTION, list_id, {"sharedUserIDs": ArrayRemove((user_id,))}
                )
                logger.info("Removed user from list %s", list_id)
            return True
        except RemoteStoreError as exc:
            logger.warning("Failed to leave list %s: %s", list_id, exc.message)
            return False

    async def leave_lists(self, list_ids: Iterable[str], user_id: str) -> List[str]:
        """
        Remove the user from each list; a list whose last member leaves is
        deleted. Lists are processed concurrently and independently. Returns
        the ids that were left successfully.
        """
        user_id = self._require_user(user_id)
        ids = list(dict.fromkeys(i for i in list_ids if i))
        if not ids:
            return []

        self.is_loading = True
        try:
            outcomes = await asyncio.gather(*(self._leave_one(list_id, user_id) for list_id in ids))
        finally:
            self.is_loading = False

        removed = set(ids)
        self.list_items = tuple(item for item in self.list_items if item.id not in removed)
        self.reconciler.forget(ids, user_id)
        self.error_message = None
        return [list_id for list_id, ok in zip(ids, outcomes) if ok]

    async def join_list(self, code: str, user_id: str) -> str:
        """Join the list whose share code is ``code``. Returns the list id."""
        user_id = self._require_user(user_id)
        code = normalize_share_code(code or "")
        if not code:
            raise self._fail(InvalidInputError(MSG_ENTER_CODE))

        self.is_loading = True
        try:
            try:
                matches = await self._store.query(LISTS_COLLECTION, [FieldFilter("shareCode", "==", code)])
            except RemoteStoreError as exc:
                logger.warning("%s: %s", MSG_JOINING_LIST, exc.message)
                raise self._fail(RemoteStoreError(MSG_JOINING_LIST, detail=exc.message)) from exc

            if not matches:
                raise self._fail(NotFoundError(MSG_INVALID_CODE))

            doc = matches[0]
            if self.find_list(doc.id) is not None:
                raise self._fail(ConflictError(MSG_ALREADY_JOINED))
            members = doc.data.get("sharedUserIDs")
            if isinstance(members, list) and user_id in members:
                raise self._fail(ConflictError(MSG_ALREADY_JOINED))

            try:
                await self._store.update_document(
                    LISTS_COLLECTION, doc.id, {"sharedUserIDs": ArrayUnion((user_id,))}
                )
            except RemoteStoreError as exc:
                logger.warning("%s list=%s: %s", MSG_JOINING_LIST, doc.id, exc.message)
                raise self._fail(RemoteStoreError(MSG_JOINING_LIST, detail=exc.message)) from exc
        finally:
            self.is_loading = False

        logger.info("Joined list %s", doc.id)
        return doc.id

    # ------------------------------------------------------------------
    # Display order (local only)
    # ------------------------------------------------------------------

    def start_reordering(self) -> None:
        self.reconciler.begin_reorder()

    def move_lists(self, from_index: int, to_index: int) -> None:
        """Move one list so that it ends up at ``to_index``."""
        count = len(self.list_items)
        if not (0 <= from_index < count and 0 <= to_index < count):
            raise self._fail(InvalidInputError("Move index out of range."))
        items = list(self.list_items)
        items.insert(to_index, items.pop(from_index))
        self.list_items = tuple(items)

    def update_list_order(self, user_id: str) -> None:
        """Remember the currently displayed order and let snapshots through after settling."""
        user_id = self._require_user(user_id)
        result = self.reconciler.commit_reorder([item.id for item in self.list_items], user_id, self.list_items)
        self.list_items = result.ordered

    def reorder_lists(self, list_ids: Sequence[str], user_id: str) -> None:
        """Apply a complete new display order in one reorder session."""
        user_id = self._require_user(user_id)
        current = [item.id for item in self.list_items]
        if len(list_ids) != len(current) or set(list_ids) != set(current):
            raise self._fail(InvalidInputError("The new order must contain every list exactly once."))

        self.start_reordering()
        position = {list_id: i for i, list_id in enumerate(list_ids)}
        self.list_items = tuple(sorted(self.list_items, key=lambda item: position[item.id]))
        self.update_list_order(user_id)

    # ------------------------------------------------------------------
    # Todos
    # ------------------------------------------------------------------

    async def add_todo(
        self,
        list_id: str,
        title: str,
        subtitle: Optional[str] = None,
        due_date: Optional[DueDateInput] = None,
        is_completed: bool = False,
    ) -> TodoItem:
        title = self._require_title(title)
        due = self._due(due_date)
        previous = self._require_list(list_id)

        todo = TodoItem(title=title, subtitle=_clean_subtitle(subtitle), due_date=due, is_completed=is_completed)
        self._replace(previous.model_copy(update={"todos": previous.todos + (todo,)}))

        # A single addition is merged server side so concurrent adds never collide.
        await self._write(
            list_id,
            {"todos": ArrayUnion((todo.to_document(),))},
            lambda cur: _without_todo(cur, todo.id),
            MSG_ADDING_TODO,
        )
        return todo

    async def _replace_todos(self, updated: ListItem, revert: Revert, message: str) -> None:
        """Show ``updated`` and write its whole todo array."""
        self._replace(updated)
        await self._write(updated.id, {"todos": updated.todo_documents()}, revert, message)

    async def update_todo(
        self,
        list_id: str,
        todo_id: str,
        title: str,
        subtitle: Optional[str] = None,
        due_date: Optional[DueDateInput] = None,
    ) -> TodoItem:
        title = self._require_title(title)
        due = self._due(due_date)
        previous = self._require_list(list_id)
        todo = self._require_todo(previous, todo_id)

        old = {"title": todo.title, "subtitle": todo.subtitle, "due_date": todo.due_date}
        new = {"title": title, "subtitle": _clean_subtitle(subtitle), "due_date": due}
        edited = todo.model_copy(update=new)
        await self._replace_todos(
            _map_todo(previous, todo_id, lambda _: edited),
            lambda cur: _map_todo(cur, todo_id, lambda t: t.model_copy(update=old)),
            MSG_UPDATING_TODO,
        )
        return edited

    async def update_todo_order(self, list_id: str, todo_ids: Sequence[str]) -> None:
        previous = self._require_list(list_id)
        current = [t.id for t in previous.todos]
        if len(todo_ids) != len(current) or set(todo_ids) != set(current):
            raise self._fail(InvalidInputError("The new order must contain every todo exactly once."))

        await self._replace_todos(
            _restore_order(previous, todo_ids),
            lambda cur: _restore_order(cur, current),
            MSG_REORDERING_TODO,
        )

    async def delete_todos(self, list_id: str, todo_ids: Iterable[str]) -> int:
        """Delete the given todos. Returns how many were removed."""
        previous = self._require_list(list_id)
        doomed = set(todo_ids)
        removed = [(i, t) for i, t in enumerate(previous.todos) if t.id in doomed]
        if not removed:
            return 0

        kept = tuple(t for t in previous.todos if t.id not in doomed)
        await self._replace_todos(
            previous.model_copy(update={"todos": kept}),
            lambda cur: _reinsert_todos(cur, removed),
            MSG_DELETING_TODO,
        )
        return len(removed)

    async def toggle_todo_completion(self, list_id: str, todo_id: str) -> bool:
        """Flip a todo's completion flag. Returns the new value."""
        previous = self._require_list(list_id)
        todo = self._require_todo(previous, todo_id)
        old_value = todo.is_completed

        await self._replace_todos(
            _map_todo(previous, todo_id, lambda t: t.model_copy(update={"is_completed": not old_value})),
            lambda cur: _map_todo(cur, todo_id, lambda t: t.model_copy(update={"is_completed": old_value})),
            MSG_TOGGLING_TODO,
        )
        return not old_value

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def delete_all_data(self, user_id: str) -> None:
        """
        Leave every list the user belongs to (best effort) and clear local
        state, whatever the remote outcome.
        """
        if user_id:
            try:
                docs = await self._store.query(
                    LISTS_COLLECTION, [FieldFilter("sharedUserIDs", "array_contains", user_id)]
                )
            except RemoteStoreError as exc:
                logger.warning("Could not look up lists for account deletion: %s", exc.message)
                docs = []
            await asyncio.gather(*(self._leave_one(doc.id, user_id) for doc in docs))

        self.stop_observing()
        self.list_items = ()
        self.is_loading = False
        self.error_message = None
        self.user_id = None
        self.reconciler.reset(user_id or None)

    # ------------------------------------------------------------------
    # Presentation helpers
    # ------------------------------------------------------------------

    def display_name(self, user_id: str) -> Optional[str]:
        return self.nicknames.display_name(user_id)

    @staticmethod
    def completion_progress(item: ListItem) -> float:
        return completion_progress(item)

    def close(self) -> None:
        self.stop_observing()
        self.reconciler.close()
        for task in list(self._background):
            task.cancel()
