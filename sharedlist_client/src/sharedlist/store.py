from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import InvalidInputError, RemoteStoreError
from .models import new_id
from .settings import MAX_IN_QUERY_VALUES

logger = logging.getLogger(__name__)

LISTS_COLLECTION = "lists"
PROFILES_COLLECTION = "userProfiles"

# Pseudo field name that makes a filter match the document id.
DOCUMENT_ID = "__name__"


@dataclass(frozen=True)
class ArrayUnion:
    """Field update: append each value not already present in the array."""

    values: Tuple[Any, ...]


@dataclass(frozen=True)
class ArrayRemove:
    """Field update: remove every element equal to one of the values."""

    values: Tuple[Any, ...]


class _DeleteField:
    def __repr__(self) -> str:
        return "DELETE_FIELD"


# Field update: remove the field from the document.
DELETE_FIELD = _DeleteField()


_FILTER_OPS = {"==", "array_contains", "in"}


@dataclass(frozen=True)
class FieldFilter:
    """
    A single query predicate.

    Supported ops:
    - '==': field equals value
    - 'array_contains': array field contains value
    - 'in': field is one of value (a sequence of at most 10 items)
    """

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _FILTER_OPS:
            raise InvalidInputError(f"Unsupported filter operator: {self.op}")
        if self.op == "in":
            if not isinstance(self.value, (list, tuple)):
                raise InvalidInputError("'in' filter requires a list of values")
            if not 0 < len(self.value) <= MAX_IN_QUERY_VALUES:
                raise InvalidInputError(
                    f"'in' filter accepts between 1 and {MAX_IN_QUERY_VALUES} values"
                )

    def matches(self, doc_id: str, data: Mapping[str, Any]) -> bool:
        if self.field == DOCUMENT_ID:
            present, actual = True, doc_id
        else:
            present, actual = self.field in data, data.get(self.field)
        if not present:
            return False
        if self.op == "==":
            return actual == self.value
        if self.op == "array_contains":
            return isinstance(actual, list) and self.value in actual
        return actual in self.value


@dataclass
class DocumentSnapshot:
    id: str
    data: Dict[str, Any]


@dataclass
class QuerySnapshot:
    documents: List[DocumentSnapshot] = field(default_factory=list)


SnapshotCallback = Callable[[Optional[QuerySnapshot], Optional[Exception]], None]


class Subscription:
    """Handle for a live query. Must be removed explicitly."""

    def __init__(self, on_remove: Callable[[], None]) -> None:
        self._on_remove: Optional[Callable[[], None]] = on_remove

    @property
    def active(self) -> bool:
        return self._on_remove is not None

    def remove(self) -> None:
        if self._on_remove is None:
            return
        on_remove, self._on_remove = self._on_remove, None
        on_remove()


# PUBLIC_INTERFACE
class DocumentStore(ABC):
    """
    Abstract contract for the remote document database.

    Every method raises RemoteStoreError when the store cannot complete the call.
    """

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        """Point read. Return None if the document does not exist."""

    @abstractmethod
    async def add_document(self, collection: str, data: Mapping[str, Any]) -> str:
        """Create a document with a store assigned id and return the id."""

    @abstractmethod
    async def set_document(
        self, collection: str, doc_id: str, data: Mapping[str, Any], merge: bool = False
    ) -> None:
        """Write a whole document, or merge fields into it when ``merge`` is set."""

    @abstractmethod
    async def update_document(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """
        Update fields of an existing document. Values may be ArrayUnion,
        ArrayRemove or DELETE_FIELD. Fails if the document does not exist.
        """

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""

    @abstractmethod
    async def query(self, collection: str, filters: Sequence[FieldFilter]) -> List[DocumentSnapshot]:
        """One-shot query returning every document matching all filters."""

    @abstractmethod
    def subscribe(
        self, collection: str, filters: Sequence[FieldFilter], callback: SnapshotCallback
    ) -> Subscription:
        """
        Start a live query. ``callback(snapshot, error)`` receives the full
        matching result set once on subscription and again after each change
        affecting it. Delivery is asynchronous.
        """


@dataclass
class _Listener:
    collection: str
    filters: Tuple[FieldFilter, ...]
    callback: SnapshotCallback
    active: bool = True


def _apply_field(data: Dict[str, Any], name: str, value: Any) -> None:
    if value is DELETE_FIELD:
        data.pop(name, None)
    elif isinstance(value, ArrayUnion):
        current = list(data.get(name) or [])
        for v in value.values:
            if v not in current:
                current.append(copy.deepcopy(v))
        data[name] = current
    elif isinstance(value, ArrayRemove):
        current = list(data.get(name) or [])
        data[name] = [v for v in current if v not in value.values]
    else:
        data[name] = copy.deepcopy(value)


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local document store with live queries, suitable for testing and
    offline runtime. Documents are deep-copied on the way in and out.

    Snapshots are delivered with ``loop.call_soon`` on the running event loop,
    so mutating calls and subscriptions must happen inside that loop.
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._listeners: List[_Listener] = []

    def _docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def get_document(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        data = self._docs(collection).get(doc_id)
        if data is None:
            return None
        return DocumentSnapshot(id=doc_id, data=copy.deepcopy(data))

    async def add_document(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = new_id()
        self._write(collection, doc_id, copy.deepcopy(dict(data)))
        return doc_id

    async def set_document(
        self, collection: str, doc_id: str, data: Mapping[str, Any], merge: bool = False
    ) -> None:
        existing = self._docs(collection).get(doc_id)
        updated: Dict[str, Any] = copy.deepcopy(existing) if (merge and existing) else {}
        for name, value in data.items():
            _apply_field(updated, name, value)
        self._write(collection, doc_id, updated)

    async def update_document(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        existing = self._docs(collection).get(doc_id)
        if existing is None:
            raise RemoteStoreError(f"No document to update: {collection}/{doc_id}")
        updated = copy.deepcopy(existing)
        for name, value in fields.items():
            _apply_field(updated, name, value)
        self._write(collection, doc_id, updated)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        before = self._docs(collection).pop(doc_id, None)
        if before is not None:
            self._notify(collection, doc_id, before, None)

    async def query(self, collection: str, filters: Sequence[FieldFilter]) -> List[DocumentSnapshot]:
        return self._matching(collection, tuple(filters))

    def subscribe(
        self, collection: str, filters: Sequence[FieldFilter], callback: SnapshotCallback
    ) -> Subscription:
        listener = _Listener(collection=collection, filters=tuple(filters), callback=callback)
        self._listeners.append(listener)
        self._schedule(listener)

        def _remove() -> None:
            listener.active = False
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(_remove)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _matching(self, collection: str, filters: Tuple[FieldFilter, ...]) -> List[DocumentSnapshot]:
        return [
            DocumentSnapshot(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in self._docs(collection).items()
            if all(f.matches(doc_id, data) for f in filters)
        ]

    def _write(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        docs = self._docs(collection)
        before = docs.get(doc_id)
        docs[doc_id] = data
        self._notify(collection, doc_id, before, data)

    def _notify(
        self,
        collection: str,
        doc_id: str,
        before: Optional[Mapping[str, Any]],
        after: Optional[Mapping[str, Any]],
    ) -> None:
        for listener in list(self._listeners):
            if listener.collection != collection:
                continue
            was = before is not None and all(f.matches(doc_id, before) for f in listener.filters)
            now = after is not None and all(f.matches(doc_id, after) for f in listener.filters)
            if was or now:
                self._schedule(listener)

    def _schedule(self, listener: _Listener) -> None:
        snapshot = QuerySnapshot(documents=self._matching(listener.collection, listener.filters))
        loop = asyncio.get_running_loop()
        loop.call_soon(self._deliver, listener, snapshot)

    @staticmethod
    def _deliver(listener: _Listener, snapshot: QuerySnapshot) -> None:
        if not listener.active:
            return
        try:
            listener.callback(snapshot, None)
        except Exception:
            logger.exception("Snapshot listener for '%s' raised", listener.collection)
