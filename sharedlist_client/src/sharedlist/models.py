from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import List, Optional, Tuple, TypedDict, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Shared type for incoming due dates which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]

TITLE_MAX_LENGTH = 200
MSG_BAD_DUE_DATE = "Due date must be an ISO 8601 date or date-time, e.g. 2030-01-31 or 2030-01-31T18:00:00Z."


# PUBLIC_INTERFACE
class TodoDocument(TypedDict, total=False):
    """
    Remote representation of a todo, stored inside the parent list's ``todos`` array.

    Optional keys (``subtitle``, ``dueDate``) are omitted rather than stored as null.
    """

    id: str
    title: str
    subtitle: str
    isCompleted: bool
    dueDate: datetime


# PUBLIC_INTERFACE
class ListDocument(TypedDict, total=False):
    """
    Remote representation of a shared list in the ``lists`` collection.

    Fields:
    - title: Non-empty list title
    - subtitle: Optional description
    - isCompleted: Completion flag
    - dueDate: Optional due timestamp
    - todos: Ordered todo entries; order is meaningful
    - shareCode: Short invite code used for join-by-code
    - sharedUserIDs: Member user ids; never empty while the document exists
    """

    title: str
    subtitle: str
    isCompleted: bool
    dueDate: datetime
    todos: List[TodoDocument]
    shareCode: str
    sharedUserIDs: List[str]


# PUBLIC_INTERFACE
class ProfileDocument(TypedDict, total=False):
    """Remote user profile in the ``userProfiles`` collection, keyed by user id."""

    nickname: str


def new_id() -> str:
    return str(uuid.uuid4()).upper()


def parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Coerce a due date from a form field, an API payload or a stored document.

    A bare date means midnight of that day. Blank strings mean "no due date".
    A trailing 'Z' is read as UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if not isinstance(value, str):
        raise ValueError(MSG_BAD_DUE_DATE)

    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.combine(date.fromisoformat(text), time.min)
    except ValueError as exc:
        raise ValueError(MSG_BAD_DUE_DATE) from exc


def clean_title(value: Optional[str]) -> str:
    """Strip whitespace and enforce 1..200 length."""
    if value is None:
        raise ValueError("title is required")
    s = value.strip()
    if not (1 <= len(s) <= TITLE_MAX_LENGTH):
        raise ValueError(f"title length must be between 1 and {TITLE_MAX_LENGTH} characters")
    return s


# PUBLIC_INTERFACE
class TodoItem(BaseModel):
    """
    A single todo owned by exactly one list.

    Instances are immutable; edits produce a new value via ``model_copy``.
    Field aliases match the remote document field names.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_id, min_length=1)
    title: str
    subtitle: Optional[str] = None
    is_completed: bool = Field(default=False, alias="isCompleted")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return clean_title(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def normalize_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return parse_due_date(v)

    def to_document(self) -> TodoDocument:
        """Serialize for the remote store, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)  # type: ignore[return-value]


# PUBLIC_INTERFACE
class ListItem(BaseModel):
    """
    A shared list as shown to the signed in user.

    ``id`` is the remote document id; it is not part of the stored document.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_id, min_length=1)
    title: str
    subtitle: Optional[str] = None
    is_completed: bool = Field(default=False, alias="isCompleted")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    todos: Tuple[TodoItem, ...] = ()
    share_code: str = Field(default="", alias="shareCode")
    shared_user_ids: Tuple[str, ...] = Field(default=(), alias="sharedUserIDs")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return clean_title(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def normalize_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return parse_due_date(v)

    def find_todo(self, todo_id: str) -> Optional[TodoItem]:
        for todo in self.todos:
            if todo.id == todo_id:
                return todo
        return None

    def todo_documents(self) -> List[TodoDocument]:
        return [t.to_document() for t in self.todos]

    def to_document(self) -> ListDocument:
        """Serialize for the remote store (without the document id)."""
        data = self.model_dump(by_alias=True, exclude_none=True, exclude={"id", "todos", "shared_user_ids"})
        data["todos"] = self.todo_documents()
        data["sharedUserIDs"] = list(self.shared_user_ids)
        return data  # type: ignore[return-value]


# PUBLIC_INTERFACE
def completion_progress(item: ListItem) -> float:
    """Fraction of completed todos in ``item`` (0.0 for an empty list)."""
    total = len(item.todos)
    if total == 0:
        return 0.0
    done = sum(1 for t in item.todos if t.is_completed)
    return done / total
