"""Build history persistence on SQLite.

Public API:
    - init_database(database_url) / get_session() / close_database()
    - BuildRepository: numbered builds and stage outcomes
    - BuildHistory: session-per-call facade used by the runner

Example:
    >>> init_database("sqlite:///./data/cipipeline.db")
    >>> with get_session() as session:
    ...     builds = BuildRepository(session).list_builds("meterian-credentials")
"""

from .database import close_database, get_engine, get_session, init_database, is_initialized
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .history import BuildHistory
from .repositories import BuildRepository

__all__ = [
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    "is_initialized",
    "BuildRepository",
    "BuildHistory",
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
