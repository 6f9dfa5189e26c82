"""
Data Access Layer Module Initialization
"""

from relstore.repositories.entity import EntityRepository

__all__ = [
    "EntityRepository",
]
