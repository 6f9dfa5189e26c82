"""
Query Builder

Translates a query option map into executor calls.

An option map is an ordered mapping of filter name to value, e.g.

    {
        "where": {"status": "published"},
        "or_where": [{"author_id": 3}, {"author_id": 4}],
        "order_by": {"created_at": "DESC"},
        "limit": 10,
    }

Entries are applied in map order, which is the order the clauses end up in the
statement. Every name must have a registered handler; unknown names raise
UnsupportedFilterError before anything is sent to the executor.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from relstore.common.errors import UnsupportedFilterError, ValidationError
from relstore.executor.base import QueryExecutor

logger = logging.getLogger(__name__)

FilterHandler = Callable[[QueryExecutor, Any], None]


def _single_pair(name: str, value: Any) -> tuple[str, Any]:
    """Return the first (key, value) of a mapping filter value"""
    if not isinstance(value, Mapping) or not value:
        raise ValidationError(
            message=f"{name} expects a non-empty {{column: value}} mapping",
            code="invalid_filter_value",
            details={"filter": name},
        )
    return next(iter(value.items()))


def _column_values(name: str, value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping) or not value:
        raise ValidationError(
            message=f"{name} expects a {{column: [values]}} mapping",
            code="invalid_filter_value",
            details={"filter": name},
        )
    return value


# ─────────────────────────────────────────────────────────────
# Built-in handlers
# ─────────────────────────────────────────────────────────────

def _order_by(executor: QueryExecutor, value: Any) -> None:
    column, direction = _single_pair("order_by", value)
    executor.order_by(column, direction)


def _distinct(executor: QueryExecutor, value: Any) -> None:
    # Restricts the selected columns to this one
    executor.select(value)
    executor.distinct()


def _or_where(executor: QueryExecutor, value: Any) -> None:
    if isinstance(value, (list, tuple)):
        for condition in value:
            executor.or_where(condition)
    else:
        executor.or_where(value)


def _like(executor: QueryExecutor, value: Any) -> None:
    column, pattern = _single_pair("like", value)
    executor.like(column, pattern)


def _or_like(executor: QueryExecutor, value: Any) -> None:
    column, pattern = _single_pair("or_like", value)
    executor.or_like(column, pattern)


def _not_like(executor: QueryExecutor, value: Any) -> None:
    column, pattern = _single_pair("not_like", value)
    executor.not_like(column, pattern)


def _where(executor: QueryExecutor, value: Any) -> None:
    executor.where(value)


def _where_in(executor: QueryExecutor, value: Any) -> None:
    for column, values in _column_values("where_in", value).items():
        executor.where_in(column, values)


def _or_where_in(executor: QueryExecutor, value: Any) -> None:
    for column, values in _column_values("or_where_in", value).items():
        executor.or_where_in(column, values)


def _where_not_in(executor: QueryExecutor, value: Any) -> None:
    for column, values in _column_values("where_not_in", value).items():
        executor.where_not_in(column, values)


def _select(executor: QueryExecutor, value: Any) -> None:
    executor.select(value)


def _group_by(executor: QueryExecutor, value: Any) -> None:
    executor.group_by(value)


def _limit(executor: QueryExecutor, value: Any) -> None:
    # 10 or (10, 20) for LIMIT 10 OFFSET 20
    if isinstance(value, (list, tuple)):
        if len(value) != 2:
            raise ValidationError(
                message="limit expects an int or a (limit, offset) pair",
                code="invalid_filter_value",
                details={"filter": "limit"},
            )
        executor.limit(value[0], value[1])
    else:
        executor.limit(value)


def _offset(executor: QueryExecutor, value: Any) -> None:
    executor.offset(value)


DEFAULT_FILTERS: Dict[str, FilterHandler] = {
    "order_by": _order_by,
    "distinct": _distinct,
    "or_where": _or_where,
    "like": _like,
    "or_like": _or_like,
    "not_like": _not_like,
    "where": _where,
    "where_in": _where_in,
    "or_where_in": _or_where_in,
    "where_not_in": _where_not_in,
    "select": _select,
    "group_by": _group_by,
    "limit": _limit,
    "offset": _offset,
}


class QueryBuilder:
    """
    Registry of filter handlers keyed by option name.

    A shared instance is available through get_instance(); repositories can
    also be handed their own builder with a custom set of filters.
    """

    _instance: Optional["QueryBuilder"] = None

    def __init__(self, seed_defaults: bool = True):
        self._handlers: Dict[str, FilterHandler] = {}
        if seed_defaults:
            self._handlers.update(DEFAULT_FILTERS)

    @classmethod
    def get_instance(cls) -> "QueryBuilder":
        """Get singleton instance of the builder."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None

    def register_filter(self, name: str, handler: FilterHandler) -> None:
        """
        Register a filter handler.

        Args:
            name: Option name the handler answers to
            handler: Callable receiving (executor, option value)
        """
        self._handlers[name] = handler
        logger.debug(f"Registered query filter: {name}")

    def register(self, name: str) -> Callable[[FilterHandler], FilterHandler]:
        """Decorator form of register_filter."""

        def decorator(handler: FilterHandler) -> FilterHandler:
            self.register_filter(name, handler)
            return handler

        return decorator

    def unregister_filter(self, name: str) -> None:
        self._handlers.pop(name, None)

    def supports(self, name: str) -> bool:
        return name in self._handlers

    @property
    def filters(self) -> list[str]:
        return sorted(self._handlers)

    def apply(self, executor: QueryExecutor, options: Optional[Mapping[str, Any]]) -> None:
        """
        Apply an option map to the executor's pending statement.

        Args:
            executor: Executor whose pending statement receives the calls
            options: Ordered filter name -> value mapping; empty or None is a no-op

        Raises:
            UnsupportedFilterError: An option name has no registered handler
        """
        if not options:
            return

        for name in options:
            if name not in self._handlers:
                raise UnsupportedFilterError(name)

        for name, value in options.items():
            self._handlers[name](executor, value)

    def apply_filters(self, executor: QueryExecutor, filters: Optional[Mapping[str, Any]]) -> None:
        """Apply relation-fetch filters (same rules as apply)."""
        self.apply(executor, filters)
