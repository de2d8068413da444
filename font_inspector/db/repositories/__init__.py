"""Repository package for database access."""

from .projects import SqliteProjectRepository
from .inspections import SqliteInspectionRepository

__all__ = [
    "SqliteProjectRepository",
    "SqliteInspectionRepository",
]
