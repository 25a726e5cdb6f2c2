from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import DueDateInput, ListItem, TodoItem, clean_title, completion_progress, parse_due_date

_DUE_DATE_DESCRIPTION = "Due date/time. Accepts ISO8601 date or datetime; dates are set to 00:00"


class _TitledPayload(BaseModel):
    title: str = Field(..., description="Short title", min_length=1, max_length=200)
    subtitle: Optional[str] = Field(default=None, description="Optional detailed description")
    due_date: Optional[datetime] = Field(default=None, description=_DUE_DATE_DESCRIPTION)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        return clean_title(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def normalize_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        """
        Normalize due_date from str/date/datetime to datetime.
        """
        return parse_due_date(v)


# PUBLIC_INTERFACE
class ListCreate(_TitledPayload):
    """
    Schema for creating a new shared list.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"title": "Groceries", "subtitle": "Weekend shopping", "due_date": "2025-02-01"}
        }
    )


# PUBLIC_INTERFACE
class ListUpdate(_TitledPayload):
    """
    Schema for editing a list. All fields are replaced; omitted optionals are removed.
    """


# PUBLIC_INTERFACE
class TodoCreate(_TitledPayload):
    """
    Schema for adding a todo to a list.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"title": "Buy milk", "subtitle": "Oat", "is_completed": False, "due_date": "2025-02-01"}
        }
    )

    is_completed: bool = Field(default=False, description="Completion status flag")


# PUBLIC_INTERFACE
class TodoUpdate(_TitledPayload):
    """
    Schema for editing a todo. All fields are replaced; omitted optionals are removed.
    """


class JoinRequest(BaseModel):
    code: str = Field(..., description="Invite code shared by a list member", min_length=1)


class LeaveRequest(BaseModel):
    list_ids: List[str] = Field(..., description="Lists to leave", min_length=1)


class ListOrderRequest(BaseModel):
    list_ids: List[str] = Field(..., description="Every list id in the new display order")


class TodoOrderRequest(BaseModel):
    todo_ids: List[str] = Field(..., description="Every todo id of the list in the new order")


class TodoDeleteRequest(BaseModel):
    todo_ids: List[str] = Field(..., description="Todos to delete", min_length=1)


class SignInRequest(BaseModel):
    user_id: str = Field(..., description="Stable user identifier from the sign-in provider", min_length=1)
    email: Optional[str] = Field(default=None, description="Email reported by the sign-in provider")


class NicknameRequest(BaseModel):
    nickname: str = Field(..., description="Display name shown to other members", min_length=1, max_length=50)


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a todo.
    """

    id: str = Field(..., description="Unique identifier of the todo")
    title: str
    subtitle: Optional[str] = None
    is_completed: bool
    due_date: Optional[datetime] = None

    @classmethod
    def from_entity(cls, todo: TodoItem) -> "TodoOut":
        return cls(
            id=todo.id,
            title=todo.title,
            subtitle=todo.subtitle,
            is_completed=todo.is_completed,
            due_date=todo.due_date,
        )


# PUBLIC_INTERFACE
class ListOut(BaseModel):
    """
    Schema returned by the API for a shared list, including presentation helpers.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "5C1F2D4E-0000-4000-8000-000000000000",
                "title": "Groceries",
                "subtitle": None,
                "is_completed": False,
                "due_date": None,
                "todos": [],
                "share_code": "A1B-2C3",
                "shared_user_ids": ["user-1"],
                "member_names": {"user-1": "Jiho"},
                "progress": 0.0,
            }
        }
    )

    id: str
    title: str
    subtitle: Optional[str] = None
    is_completed: bool
    due_date: Optional[datetime] = None
    todos: List[TodoOut]
    share_code: str
    shared_user_ids: List[str]
    member_names: Dict[str, str] = Field(default_factory=dict, description="Known nicknames of members")
    progress: float = Field(..., description="Completed todos / all todos, 0 when empty")

    @classmethod
    def from_entity(cls, item: ListItem, member_names: Dict[str, str]) -> "ListOut":
        return cls(
            id=item.id,
            title=item.title,
            subtitle=item.subtitle,
            is_completed=item.is_completed,
            due_date=item.due_date,
            todos=[TodoOut.from_entity(t) for t in item.todos],
            share_code=item.share_code,
            shared_user_ids=list(item.shared_user_ids),
            member_names=member_names,
            progress=completion_progress(item),
        )


class ListsEnvelope(BaseModel):
    """
    Presentation state of the signed in user's lists.
    """

    items: List[ListOut] = Field(..., description="Lists in display order")
    is_loading: bool
    error_message: Optional[str] = None
    reordering: bool = Field(..., description="Inbound snapshots are held back while true")


class CreatedResponse(BaseModel):
    id: str


class LeaveResult(BaseModel):
    left: List[str] = Field(..., description="Lists the user was removed from")


class ToggleResult(BaseModel):
    is_completed: bool


class DeleteTodosResult(BaseModel):
    removed: int


class SessionOut(BaseModel):
    is_authenticated: bool
    user_id: str
    user_email: str
    nickname: str
    is_nickname_set: bool


class NicknamesOut(BaseModel):
    nicknames: Dict[str, str]
