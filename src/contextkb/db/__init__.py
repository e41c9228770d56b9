"""contextkb database layer."""

from contextkb.db.connection import Database
from contextkb.db.conversations import ConversationStore, filter_active_versions
from contextkb.db.migrations import MIGRATIONS, run_migrations
from contextkb.db.repository import Repository, SourceConflictError
from contextkb.db.schema import initialize

__all__ = [
    "ConversationStore",
    "Database",
    "MIGRATIONS",
    "Repository",
    "SourceConflictError",
    "filter_active_versions",
    "initialize",
    "run_migrations",
]
