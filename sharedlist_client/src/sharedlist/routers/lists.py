from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..auth import require_session
from ..schemas import (
    CreatedResponse,
    DeleteTodosResult,
    JoinRequest,
    LeaveRequest,
    LeaveResult,
    ListCreate,
    ListOrderRequest,
    ListOut,
    ListsEnvelope,
    ListUpdate,
    TodoCreate,
    TodoDeleteRequest,
    TodoOrderRequest,
    TodoOut,
    TodoUpdate,
    ToggleResult,
)
from ..services import Services, get_services
from ..viewmodel import ListViewModel

router = APIRouter(
    prefix="/api/v1/lists",
    tags=["lists"],
)


def _get_lists(services: Services = Depends(get_services)) -> ListViewModel:
    """
    Dependency wrapper for the list view-model to keep signatures clean.
    """
    return services.lists


def _envelope(lists: ListViewModel) -> ListsEnvelope:
    items = [
        ListOut.from_entity(item, lists.nicknames.names_for(item.shared_user_ids))
        for item in lists.list_items
    ]
    return ListsEnvelope(
        items=items,
        is_loading=lists.is_loading,
        error_message=lists.error_message,
        reordering=lists.reconciler.reordering,
    )


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=ListsEnvelope,
    summary="List Lists",
    description="Return the signed in user's lists in their remembered display order.",
)
async def get_lists(
    user_id: str = Depends(require_session), lists: ListViewModel = Depends(_get_lists)
) -> ListsEnvelope:
    return _envelope(lists)


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=CreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create List",
    description="Create a list with a fresh share code; the caller becomes its only member.",
    responses={
        201: {"description": "List created"},
        422: {"description": "Validation error"},
    },
)
async def create_list(
    payload: ListCreate,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> CreatedResponse:
    list_id = await lists.create_list(payload.title, user_id, payload.subtitle, payload.due_date)
    return CreatedResponse(id=list_id)


# PUBLIC_INTERFACE
@router.post(
    "/join",
    response_model=CreatedResponse,
    summary="Join List",
    description="Join the list matching an invite code.",
    responses={
        200: {"description": "Joined"},
        404: {"description": "Invalid invite code"},
        409: {"description": "Already joined"},
    },
)
async def join_list(
    payload: JoinRequest,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> CreatedResponse:
    list_id = await lists.join_list(payload.code, user_id)
    return CreatedResponse(id=list_id)


# PUBLIC_INTERFACE
@router.post(
    "/leave",
    response_model=LeaveResult,
    summary="Leave Lists",
    description="Leave one or more lists. A list whose last member leaves is deleted.",
)
async def leave_lists(
    payload: LeaveRequest,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> LeaveResult:
    left = await lists.leave_lists(payload.list_ids, user_id)
    return LeaveResult(left=left)


# PUBLIC_INTERFACE
@router.put(
    "/order",
    response_model=ListsEnvelope,
    summary="Reorder Lists",
    description=(
        "Store a new display order on this device only. Inbound updates are held back "
        "briefly afterwards so they cannot undo the move."
    ),
)
async def reorder_lists(
    payload: ListOrderRequest,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> ListsEnvelope:
    lists.reorder_lists(payload.list_ids, user_id)
    return _envelope(lists)


# PUBLIC_INTERFACE
@router.patch(
    "/{list_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Update List",
    description="Replace title, subtitle and due date of a list.",
    responses={
        204: {"description": "List updated"},
        502: {"description": "Remote write failed; local change reverted"},
    },
)
async def update_list(
    list_id: str,
    payload: ListUpdate,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> None:
    await lists.update_list(list_id, payload.title, payload.subtitle, payload.due_date)
    return None


# PUBLIC_INTERFACE
@router.post(
    "/{list_id}/complete",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Complete List",
    description="Finish a list: it is deleted for every member.",
)
async def complete_list(
    list_id: str,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> None:
    await lists.complete_list(list_id, user_id)
    return None


# PUBLIC_INTERFACE
@router.post(
    "/{list_id}/todos",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add Todo",
    responses={
        201: {"description": "Todo added"},
        404: {"description": "List not found"},
    },
)
async def add_todo(
    list_id: str,
    payload: TodoCreate,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> TodoOut:
    todo = await lists.add_todo(
        list_id, payload.title, payload.subtitle, payload.due_date, payload.is_completed
    )
    return TodoOut.from_entity(todo)


# PUBLIC_INTERFACE
@router.put(
    "/{list_id}/todos/order",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Reorder Todos",
    description="Store a new todo order for every member of the list.",
)
async def reorder_todos(
    list_id: str,
    payload: TodoOrderRequest,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> None:
    await lists.update_todo_order(list_id, payload.todo_ids)
    return None


# PUBLIC_INTERFACE
@router.post(
    "/{list_id}/todos/delete",
    response_model=DeleteTodosResult,
    summary="Delete Todos",
)
async def delete_todos(
    list_id: str,
    payload: TodoDeleteRequest,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> DeleteTodosResult:
    removed = await lists.delete_todos(list_id, payload.todo_ids)
    return DeleteTodosResult(removed=removed)


# PUBLIC_INTERFACE
@router.patch(
    "/{list_id}/todos/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    responses={404: {"description": "List or todo not found"}},
)
async def update_todo(
    list_id: str,
    todo_id: str,
    payload: TodoUpdate,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> TodoOut:
    todo = await lists.update_todo(list_id, todo_id, payload.title, payload.subtitle, payload.due_date)
    return TodoOut.from_entity(todo)


# PUBLIC_INTERFACE
@router.post(
    "/{list_id}/todos/{todo_id}/toggle",
    response_model=ToggleResult,
    summary="Toggle Todo",
    description="Flip a todo's completion flag. Reverted locally if the remote write fails.",
)
async def toggle_todo(
    list_id: str,
    todo_id: str,
    user_id: str = Depends(require_session),
    lists: ListViewModel = Depends(_get_lists),
) -> ToggleResult:
    is_completed = await lists.toggle_todo_completion(list_id, todo_id)
    return ToggleResult(is_completed=is_completed)
