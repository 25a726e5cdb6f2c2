"""
SharedList client package.

State layer for shared to-do lists backed by a remote document store:
live list observation with a per-device display order, optimistic list and
todo mutations with rollback, nickname resolution and the sign-in session.
The FastAPI app lives in ``sharedlist.main``.
"""

from .models import ListItem, TodoItem
from .reconciler import OrderReconciler, ReconcileResult, reconcile
from .viewmodel import ListViewModel

__all__ = [
    "ListItem",
    "TodoItem",
    "ListViewModel",
    "OrderReconciler",
    "ReconcileResult",
    "reconcile",
]
