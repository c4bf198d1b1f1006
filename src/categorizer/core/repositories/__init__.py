"""Repositories over the processing ledger and the reference vocabulary."""

from categorizer.core.repositories._helpers import PageSlice
from categorizer.core.repositories.reference import ReferenceRepository
from categorizer.core.repositories.sessions import SessionStore

__all__ = ["PageSlice", "ReferenceRepository", "SessionStore"]
