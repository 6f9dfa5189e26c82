"""
Query Building Module
"""

from relstore.query.builder import DEFAULT_FILTERS, FilterHandler, QueryBuilder

__all__ = [
    "DEFAULT_FILTERS",
    "FilterHandler",
    "QueryBuilder",
]
