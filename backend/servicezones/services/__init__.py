"""Services exports."""
from servicezones.services.store import get_store, open_store
from servicezones.services.store_base import BoundaryStore
from servicezones.services.store_memory import InMemoryBoundaryStore

__all__ = [
    "BoundaryStore",
    "InMemoryBoundaryStore",
    "get_store",
    "open_store",
]
