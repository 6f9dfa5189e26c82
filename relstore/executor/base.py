"""
Query Executor Interface

Defines the collaborator the entity repositories run their statements through.

Predicate calls (where, like, order_by, ...) are synchronous and accumulate on a
per-statement builder. The next terminal call (get, update, delete,
count_all_results) consumes that state and resets it. Inserts do not touch the
accumulated predicates.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any, Mapping, Optional, Sequence, Union

from relstore.domain.result import WriteResult

# A condition is either a {column: value} mapping or a raw SQL fragment
Condition = Union[Mapping[str, Any], str]
Row = dict[str, Any]

# Sentinel for where(column, value) calls where value may legitimately be None
UNSET: Any = object()


class QueryExecutor(ABC):
    """Query Executor Interface"""

    # ============ Predicate building ============

    @abstractmethod
    def where(self, condition: Union[Condition, str], value: Any = UNSET) -> "QueryExecutor":
        """
        AND a condition onto the pending statement

        Accepts a {column: value} mapping, a raw SQL string, or a column name
        with a value. Column keys may carry a comparison operator, e.g. "age >".
        """
        pass

    @abstractmethod
    def or_where(self, condition: Union[Condition, str], value: Any = UNSET) -> "QueryExecutor":
        """OR a condition onto the pending statement (every mapping entry is OR-ed)"""
        pass

    @abstractmethod
    def like(self, column: str, match: str, side: str = "both") -> "QueryExecutor":
        """AND a LIKE condition; side is one of both / before / after / none"""
        pass

    @abstractmethod
    def or_like(self, column: str, match: str, side: str = "both") -> "QueryExecutor":
        """OR a LIKE condition"""
        pass

    @abstractmethod
    def not_like(self, column: str, match: str, side: str = "both") -> "QueryExecutor":
        """AND a NOT LIKE condition"""
        pass

    @abstractmethod
    def where_in(self, column: str, values: Sequence[Any]) -> "QueryExecutor":
        """AND a column IN (...) condition"""
        pass

    @abstractmethod
    def or_where_in(self, column: str, values: Sequence[Any]) -> "QueryExecutor":
        """OR a column IN (...) condition"""
        pass

    @abstractmethod
    def where_not_in(self, column: str, values: Sequence[Any]) -> "QueryExecutor":
        """AND a column NOT IN (...) condition"""
        pass

    @abstractmethod
    def group_start(self) -> "QueryExecutor":
        """Open a parenthesised condition group, AND-ed onto the outer conditions"""
        pass

    @abstractmethod
    def or_group_start(self) -> "QueryExecutor":
        """Open a parenthesised condition group, OR-ed onto the outer conditions"""
        pass

    @abstractmethod
    def group_end(self) -> "QueryExecutor":
        """Close the innermost open group"""
        pass

    @abstractmethod
    def select(self, columns: Union[str, Sequence[str]]) -> "QueryExecutor":
        """Restrict selected columns (comma separated string or sequence)"""
        pass

    @abstractmethod
    def distinct(self, enabled: bool = True) -> "QueryExecutor":
        """Mark the pending SELECT as DISTINCT"""
        pass

    @abstractmethod
    def order_by(self, column: str, direction: str = "ASC") -> "QueryExecutor":
        """Append an ORDER BY term"""
        pass

    @abstractmethod
    def group_by(self, columns: Union[str, Sequence[str]]) -> "QueryExecutor":
        """Append GROUP BY columns"""
        pass

    @abstractmethod
    def limit(self, value: int, offset: Optional[int] = None) -> "QueryExecutor":
        """Set LIMIT (and optionally OFFSET)"""
        pass

    @abstractmethod
    def offset(self, value: int) -> "QueryExecutor":
        """Set OFFSET"""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Discard all pending predicate state"""
        pass

    # ============ Terminal operations ============

    @abstractmethod
    async def get(self, table: str) -> list[Row]:
        """Run the pending SELECT against table and return every row"""
        pass

    @abstractmethod
    async def count_all_results(self, table: str) -> int:
        """Count rows the pending SELECT would return"""
        pass

    @abstractmethod
    async def insert(self, table: str, row: Mapping[str, Any]) -> WriteResult:
        """Insert one row; insert_id carries the new primary key on success"""
        pass

    @abstractmethod
    async def insert_batch(self, table: str, rows: Sequence[Mapping[str, Any]]) -> WriteResult:
        """Insert several rows in one statement"""
        pass

    @abstractmethod
    async def update(self, table: str, row: Mapping[str, Any]) -> WriteResult:
        """Update rows matching the pending conditions"""
        pass

    @abstractmethod
    async def delete(self, table: str) -> WriteResult:
        """Delete rows matching the pending conditions"""
        pass

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager["QueryExecutor"]:
        """
        Group writes into one transaction

        Writes inside the block are committed together on clean exit and
        rolled back when an exception escapes or any write inside failed.
        """
        pass
