"""
Durable storage for job lifecycle state.

- PersistenceAdapter: buffered, batched write-behind plus recovery and cleanup
- JobRepository: the storage boundary
- InMemoryJobRepository / PostgresJobRepository: implementations
"""

from .adapter import PersistenceAdapter
from .store import InMemoryJobRepository, JobRepository
from .postgres import PostgresJobRepository

__all__ = [
    "PersistenceAdapter",
    "JobRepository",
    "InMemoryJobRepository",
    "PostgresJobRepository",
]
