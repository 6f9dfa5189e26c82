"""
Query Executor Module Initialization
"""

from relstore.executor.base import UNSET, QueryExecutor
from relstore.executor.sqlalchemy import SQLAlchemyQueryExecutor

__all__ = [
    "UNSET",
    "QueryExecutor",
    "SQLAlchemyQueryExecutor",
]
