from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping

from pydantic import ValidationError

from .models import ListItem, TodoItem
from .store import DocumentSnapshot

logger = logging.getLogger(__name__)


class MalformedDocumentError(ValueError):
    """Raised when a remote document cannot be turned into an entity."""

    def __init__(self, doc_id: str, reason: str) -> None:
        super().__init__(f"{doc_id}: {reason}")
        self.doc_id = doc_id
        self.reason = reason


# PUBLIC_INTERFACE
def parse_todo_document(raw: Any) -> TodoItem:
    """Build a TodoItem from one entry of a list's ``todos`` array."""
    if not isinstance(raw, Mapping):
        raise MalformedDocumentError("<todo>", "todo entry is not a mapping")
    try:
        return TodoItem.model_validate(dict(raw))
    except ValidationError as exc:
        raise MalformedDocumentError(str(raw.get("id", "<todo>")), str(exc)) from exc


# PUBLIC_INTERFACE
def parse_list_document(doc_id: str, data: Any) -> ListItem:
    """
    Build a ListItem from a ``lists`` document.

    Malformed todo entries are skipped one by one; anything wrong with the
    list itself raises MalformedDocumentError.
    """
    if not isinstance(data, Mapping):
        raise MalformedDocumentError(doc_id, "document data is not a mapping")

    raw_todos = data.get("todos")
    if raw_todos is None:
        raw_todos = []
    if not isinstance(raw_todos, list):
        raise MalformedDocumentError(doc_id, "'todos' is not an array")

    todos: List[TodoItem] = []
    for raw in raw_todos:
        try:
            todos.append(parse_todo_document(raw))
        except MalformedDocumentError as exc:
            logger.warning("Skipping malformed todo in list %s: %s", doc_id, exc.reason)

    fields = {k: v for k, v in data.items() if k != "todos"}
    fields["id"] = doc_id
    fields["todos"] = todos
    members = fields.get("sharedUserIDs")
    if not isinstance(members, list) or not members:
        raise MalformedDocumentError(doc_id, "'sharedUserIDs' must be a non-empty array")
    try:
        return ListItem.model_validate(fields)
    except ValidationError as exc:
        raise MalformedDocumentError(doc_id, str(exc)) from exc


# PUBLIC_INTERFACE
def parse_list_snapshot(documents: Iterable[DocumentSnapshot]) -> List[ListItem]:
    """
    Parse every document of a live snapshot, skipping (and logging) malformed
    ones individually. Snapshot order is preserved.
    """
    items: List[ListItem] = []
    for doc in documents:
        try:
            items.append(parse_list_document(doc.id, doc.data))
        except MalformedDocumentError as exc:
            logger.warning("Skipping malformed list document %s: %s", doc.id, exc.reason)
    return items
