"""
Database Module Initialization
"""

from relstore.db.session import (
    AsyncSessionLocal,
    dispose_engine,
    engine,
    get_db,
    get_executor,
    init_db,
    metadata,
)

__all__ = [
    "AsyncSessionLocal",
    "dispose_engine",
    "engine",
    "get_db",
    "get_executor",
    "init_db",
    "metadata",
]
