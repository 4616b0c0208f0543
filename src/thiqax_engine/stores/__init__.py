"""Collaborator store contracts and in-memory implementations."""

from .memory import (
    Fixtures,
    InMemoryApplicationStore,
    InMemoryDocumentStore,
    InMemoryJobStore,
    InMemoryProfileStore,
    InMemoryStores,
    create_in_memory_stores,
    load_fixtures,
)

__all__ = [
    "Fixtures",
    "InMemoryApplicationStore",
    "InMemoryDocumentStore",
    "InMemoryJobStore",
    "InMemoryProfileStore",
    "InMemoryStores",
    "create_in_memory_stores",
    "load_fixtures",
]
