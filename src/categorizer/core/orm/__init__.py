"""SQLAlchemy 2.0 ORM layer: declarative base, engine factory, tables."""

from categorizer.core.orm.base import CategorizerBase
from categorizer.core.orm.session import (
    CategorizerSession,
    create_categorizer_engine,
    session_factory,
)
from categorizer.core.orm.tables import (
    CategoryTable,
    LanguageTable,
    ProcessingResultTable,
    ProcessingSessionTable,
    WordTable,
)

__all__ = [
    "CategorizerBase",
    "CategorizerSession",
    "create_categorizer_engine",
    "session_factory",
    "CategoryTable",
    "LanguageTable",
    "ProcessingResultTable",
    "ProcessingSessionTable",
    "WordTable",
]
