"""Boundary store selection.

The backend is chosen by STORE_BACKEND: "postgis" opens one session-scoped
PostGISBoundaryStore per use, "memory" shares a single process-local arena.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from servicezones.config import get_settings
from servicezones.services.store_base import BoundaryStore
from servicezones.services.store_memory import InMemoryBoundaryStore

_memory_store: Optional[InMemoryBoundaryStore] = None


def get_memory_store() -> InMemoryBoundaryStore:
    """Get the shared in-memory store instance."""
    global _memory_store
    if _memory_store is None:
        _memory_store = InMemoryBoundaryStore()
    return _memory_store


@asynccontextmanager
async def open_store() -> AsyncIterator[BoundaryStore]:
    """Open the configured store for one unit of work."""
    backend = get_settings().STORE_BACKEND.lower()
    if backend == "memory":
        yield get_memory_store()
        return
    if backend != "postgis":
        raise ValueError(f"Unknown STORE_BACKEND: {backend}")

    from servicezones.database import async_session
    from servicezones.services.store_postgis import PostGISBoundaryStore

    async with async_session() as session:
        yield PostGISBoundaryStore(session)


async def get_store() -> AsyncIterator[BoundaryStore]:
    """FastAPI dependency yielding the configured store."""
    async with open_store() as store:
        yield store
