"""
Query Executor SQLAlchemy Implementation

Runs repository statements through an AsyncSession using SQLAlchemy Core.
Tables are looked up in a MetaData and reflected from the database on first
use when missing.

Conditions are kept in call order as (conjunction, clause) pairs and combined
the way a flat SQL WHERE would read them: AND binds tighter than OR, so
`a AND b OR c AND d` becomes `(a AND b) OR (c AND d)`.
Conditions added between group_start() and group_end() are combined on their
own and enter the outer WHERE as one parenthesised clause.
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Mapping, Optional, Sequence, Union

from sqlalchemy import (
    ColumnElement,
    MetaData,
    Select,
    Table,
    and_,
    asc,
    delete,
    desc,
    func,
    insert,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from relstore.common.errors import UnknownColumnError, UnknownTableError, ValidationError
from relstore.config import get_settings
from relstore.domain.result import WriteResult
from relstore.executor.base import UNSET, Condition, QueryExecutor, Row

logger = logging.getLogger(__name__)

# "column", "column >", "table.column !=" ...
_KEY_PATTERN = re.compile(r"^\s*([\w.]+)\s*(<=|>=|!=|<>|<|>|=)?\s*$")

_AND = "AND"
_OR = "OR"

ClauseFactory = Callable[[Table], ColumnElement]


def _error_reason(exc: SQLAlchemyError) -> str:
    """Driver message when available, SQLAlchemy's otherwise"""
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


class SQLAlchemyQueryExecutor(QueryExecutor):
    """
    Query Executor SQLAlchemy Implementation

    One executor wraps one session and is meant to live for a single logical
    request. Writes commit immediately unless issued inside transaction().
    """

    def __init__(
        self,
        session: AsyncSession,
        metadata: Optional[MetaData] = None,
        reflect: Optional[bool] = None,
    ):
        """
        Initialize Executor

        Args:
            session: Async database session
            metadata: Table definitions; a fresh MetaData is used when omitted
            reflect: Reflect unknown tables (defaults to REFLECT_TABLES setting)
        """
        self.session = session
        self.metadata = metadata if metadata is not None else MetaData()
        self.reflect = get_settings().REFLECT_TABLES if reflect is None else reflect
        self._in_transaction = False
        self._transaction_failed = False
        self.reset()

    # ============ Pending statement state ============

    def reset(self) -> None:
        self._wheres: list[tuple[str, ClauseFactory]] = []
        # Enclosing condition lists of the open groups, innermost last
        self._group_stack: list[tuple[str, list[tuple[str, ClauseFactory]]]] = []
        self._select: list[str] = []
        self._distinct = False
        self._order_by: list[tuple[str, str]] = []
        self._group_by: list[str] = []
        self._limit: Optional[int] = None
        self._offset: Optional[int] = None

    def _add_conditions(self, conjunction: str, condition: Any, value: Any) -> None:
        if value is not UNSET:
            if not isinstance(condition, str):
                raise ValidationError(
                    message="A column name is required when a value is given",
                    code="invalid_condition",
                )
            condition = {condition: value}

        if isinstance(condition, str):
            raw = condition
            self._wheres.append((conjunction, lambda table: text(raw)))
            return

        if not isinstance(condition, Mapping):
            raise ValidationError(
                message=f"Unsupported condition type: {type(condition).__name__}",
                code="invalid_condition",
            )

        # Every key is parsed before any is queued
        clauses = [self._comparison(key, val) for key, val in condition.items()]
        self._wheres.extend((conjunction, clause) for clause in clauses)

    def _comparison(self, key: str, value: Any) -> ClauseFactory:
        match = _KEY_PATTERN.match(key)
        if not match:
            raise ValidationError(
                message=f"Invalid condition key: {key!r}",
                code="invalid_condition",
            )
        name, op = match.group(1), match.group(2) or "="

        def build(table: Table) -> ColumnElement:
            column = self._column(table, name)
            if op == "=":
                return column.is_(None) if value is None else column == value
            if op in ("!=", "<>"):
                return column.is_not(None) if value is None else column != value
            if op == "<":
                return column < value
            if op == ">":
                return column > value
            if op == "<=":
                return column <= value
            return column >= value

        return build

    def _like(self, name: str, match: str, side: str, negate: bool = False) -> ClauseFactory:
        side = side.lower()
        if side not in ("both", "before", "after", "none"):
            raise ValidationError(
                message=f"Invalid LIKE side: {side!r}",
                code="invalid_condition",
            )

        def build(table: Table) -> ColumnElement:
            column = self._column(table, name)
            if side == "both":
                clause = column.contains(match, autoescape=True)
            elif side == "before":
                clause = column.endswith(match, autoescape=True)
            elif side == "after":
                clause = column.startswith(match, autoescape=True)
            else:
                clause = column.like(match)
            return ~clause if negate else clause

        return build

    def _in(self, name: str, values: Sequence[Any], negate: bool = False) -> ClauseFactory:
        values = list(values)

        def build(table: Table) -> ColumnElement:
            column = self._column(table, name)
            return column.not_in(values) if negate else column.in_(values)

        return build

    @staticmethod
    def _split_columns(columns: Union[str, Sequence[str]]) -> list[str]:
        if isinstance(columns, str):
            return [c.strip() for c in columns.split(",") if c.strip()]
        return [c.strip() for c in columns]

    def where(self, condition: Union[Condition, str], value: Any = UNSET) -> "SQLAlchemyQueryExecutor":
        self._add_conditions(_AND, condition, value)
        return self

    def or_where(self, condition: Union[Condition, str], value: Any = UNSET) -> "SQLAlchemyQueryExecutor":
        self._add_conditions(_OR, condition, value)
        return self

    def like(self, column: str, match: str, side: str = "both") -> "SQLAlchemyQueryExecutor":
        self._wheres.append((_AND, self._like(column, match, side)))
        return self

    def or_like(self, column: str, match: str, side: str = "both") -> "SQLAlchemyQueryExecutor":
        self._wheres.append((_OR, self._like(column, match, side)))
        return self

    def not_like(self, column: str, match: str, side: str = "both") -> "SQLAlchemyQueryExecutor":
        self._wheres.append((_AND, self._like(column, match, side, negate=True)))
        return self

    def where_in(self, column: str, values: Sequence[Any]) -> "SQLAlchemyQueryExecutor":
        self._wheres.append((_AND, self._in(column, values)))
        return self

    def or_where_in(self, column: str, values: Sequence[Any]) -> "SQLAlchemyQueryExecutor":
        self._wheres.append((_OR, self._in(column, values)))
        return self

    def where_not_in(self, column: str, values: Sequence[Any]) -> "SQLAlchemyQueryExecutor":
        self._wheres.append((_AND, self._in(column, values, negate=True)))
        return self

    def group_start(self) -> "SQLAlchemyQueryExecutor":
        self._group_stack.append((_AND, self._wheres))
        self._wheres = []
        return self

    def or_group_start(self) -> "SQLAlchemyQueryExecutor":
        self._group_stack.append((_OR, self._wheres))
        self._wheres = []
        return self

    def group_end(self) -> "SQLAlchemyQueryExecutor":
        if not self._group_stack:
            raise ValidationError(
                message="group_end() called without an open group",
                code="invalid_condition",
            )
        conjunction, outer = self._group_stack.pop()
        inner = self._wheres
        self._wheres = outer
        # An empty group adds nothing
        if inner:
            self._wheres.append((conjunction, lambda table: self._combine(table, inner)))
        return self

    def select(self, columns: Union[str, Sequence[str]]) -> "SQLAlchemyQueryExecutor":
        self._select.extend(c for c in self._split_columns(columns) if c != "*")
        return self

    def distinct(self, enabled: bool = True) -> "SQLAlchemyQueryExecutor":
        self._distinct = enabled
        return self

    def order_by(self, column: str, direction: str = "ASC") -> "SQLAlchemyQueryExecutor":
        self._order_by.append((column, direction))
        return self

    def group_by(self, columns: Union[str, Sequence[str]]) -> "SQLAlchemyQueryExecutor":
        self._group_by.extend(self._split_columns(columns))
        return self

    def limit(self, value: int, offset: Optional[int] = None) -> "SQLAlchemyQueryExecutor":
        self._limit = int(value)
        if offset is not None:
            self._offset = int(offset)
        return self

    def offset(self, value: int) -> "SQLAlchemyQueryExecutor":
        self._offset = int(value)
        return self

    # ============ Compilation ============

    async def _table(self, name: str) -> Table:
        table = self.metadata.tables.get(name)
        if table is not None:
            return table
        if not self.reflect:
            raise UnknownTableError(name)
        try:
            table = await self.session.run_sync(self._reflect_table, name)
        except NoSuchTableError:
            raise UnknownTableError(name) from None
        logger.debug(f"Reflected table {name} ({len(table.columns)} columns)")
        return table

    def _reflect_table(self, sync_session, name: str) -> Table:
        return Table(name, self.metadata, autoload_with=sync_session.connection())

    @staticmethod
    def _column(table: Table, name: str):
        # Accept "table.column" references to the same table
        column_name = name.rsplit(".", 1)[-1]
        try:
            return table.c[column_name]
        except KeyError:
            raise UnknownColumnError(table.name, column_name) from None

    def _where_clause(self, table: Table) -> Optional[ColumnElement]:
        if self._group_stack:
            raise ValidationError(
                message=f"{len(self._group_stack)} condition group(s) left open",
                code="invalid_condition",
            )
        return self._combine(table, self._wheres)

    @staticmethod
    def _combine(
        table: Table, entries: Sequence[tuple[str, ClauseFactory]]
    ) -> Optional[ColumnElement]:
        groups: list[list[ColumnElement]] = []
        for conjunction, build in entries:
            clause = build(table)
            if not groups or conjunction == _OR:
                groups.append([clause])
            else:
                groups[-1].append(clause)
        if not groups:
            return None
        if len(groups) == 1:
            return and_(*groups[0])
        return or_(*(and_(*group) for group in groups))

    def _select_statement(self, table: Table) -> Select:
        if self._select:
            stmt = select(*(self._column(table, c) for c in self._select))
        else:
            stmt = select(table)
        if self._distinct:
            stmt = stmt.distinct()

        where = self._where_clause(table)
        if where is not None:
            stmt = stmt.where(where)
        if self._group_by:
            stmt = stmt.group_by(*(self._column(table, c) for c in self._group_by))

        for column, direction in self._order_by:
            normalized = str(direction).strip().upper()
            if normalized == "RANDOM":
                stmt = stmt.order_by(func.random())
            elif normalized == "DESC":
                stmt = stmt.order_by(desc(self._column(table, column)))
            else:
                stmt = stmt.order_by(asc(self._column(table, column)))

        if self._limit is not None:
            stmt = stmt.limit(self._limit)
        if self._offset is not None:
            stmt = stmt.offset(self._offset)
        return stmt

    # ============ Reads ============

    async def get(self, table: str) -> list[Row]:
        try:
            target = await self._table(table)
            stmt = self._select_statement(target)
            logger.debug(f"SELECT from {table}")
            result = await self.session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]
        finally:
            self.reset()

    async def count_all_results(self, table: str) -> int:
        try:
            target = await self._table(table)
            shaped = (
                self._select
                or self._distinct
                or self._group_by
                or self._limit is not None
                or self._offset is not None
            )
            if shaped:
                stmt = select(func.count()).select_from(
                    self._select_statement(target).subquery()
                )
            else:
                stmt = select(func.count()).select_from(target)
                where = self._where_clause(target)
                if where is not None:
                    stmt = stmt.where(where)
            result = await self.session.execute(stmt)
            return int(result.scalar_one())
        finally:
            self.reset()

    # ============ Writes ============

    async def _execute_write(self, table: str, stmt, params=None) -> tuple[Any, Optional[WriteResult]]:
        """Run a write statement; returns (result, None) or (None, failure)"""
        try:
            if params is None:
                result = await self.session.execute(stmt)
            else:
                result = await self.session.execute(stmt, params)
        except SQLAlchemyError as exc:
            reason = _error_reason(exc)
            logger.warning(f"Write on {table} failed: {reason}")
            if self._in_transaction:
                self._transaction_failed = True
            else:
                await self.session.rollback()
            return None, WriteResult.failure(reason)

        if not self._in_transaction:
            await self.session.commit()
        return result, None

    async def insert(self, table: str, row: Mapping[str, Any]) -> WriteResult:
        target = await self._table(table)
        result, failure = await self._execute_write(table, insert(target).values(dict(row)))
        if failure is not None:
            return failure
        primary_key = result.inserted_primary_key
        insert_id = primary_key[0] if primary_key else None
        logger.debug(f"INSERT into {table} (id={insert_id})")
        return WriteResult.success(insert_id=insert_id, rowcount=1)

    async def insert_batch(self, table: str, rows: Sequence[Mapping[str, Any]]) -> WriteResult:
        rows = [dict(row) for row in rows]
        if not rows:
            return WriteResult.failure("No rows to insert")
        target = await self._table(table)
        result, failure = await self._execute_write(table, insert(target), rows)
        if failure is not None:
            return failure
        logger.debug(f"INSERT batch into {table} ({len(rows)} rows)")
        return WriteResult.success(rowcount=len(rows))

    async def update(self, table: str, row: Mapping[str, Any]) -> WriteResult:
        try:
            target = await self._table(table)
            stmt = update(target).values(dict(row))
            where = self._where_clause(target)
            if where is not None:
                stmt = stmt.where(where)
        finally:
            self.reset()
        result, failure = await self._execute_write(table, stmt)
        if failure is not None:
            return failure
        logger.debug(f"UPDATE {table} ({result.rowcount} rows)")
        return WriteResult.success(rowcount=result.rowcount)

    async def delete(self, table: str) -> WriteResult:
        try:
            target = await self._table(table)
            where = self._where_clause(target)
        finally:
            self.reset()
        if where is None:
            return WriteResult.failure("Deletes are not allowed without a where clause")
        result, failure = await self._execute_write(table, delete(target).where(where))
        if failure is not None:
            return failure
        logger.debug(f"DELETE from {table} ({result.rowcount} rows)")
        return WriteResult.success(rowcount=result.rowcount)

    # ============ Transactions ============

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator["SQLAlchemyQueryExecutor", None]:
        if self._in_transaction:
            # Nested blocks join the outer transaction
            yield self
            return

        self._in_transaction = True
        self._transaction_failed = False
        try:
            yield self
        except BaseException:
            await self.session.rollback()
            raise
        else:
            if self._transaction_failed:
                logger.warning("Rolling back transaction after failed write")
                await self.session.rollback()
            else:
                await self.session.commit()
        finally:
            self._in_transaction = False
