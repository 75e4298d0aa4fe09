"""Persistence collaborators."""

from remedy.store.base import (
    ErrorUpdate,
    FragmentRecord,
    FragmentStore,
    ProjectRecord,
    RecordNotFoundError,
    StoreError,
)
from remedy.store.sql import SqlFragmentStore

__all__ = [
    "ErrorUpdate",
    "FragmentRecord",
    "FragmentStore",
    "ProjectRecord",
    "RecordNotFoundError",
    "SqlFragmentStore",
    "StoreError",
]
