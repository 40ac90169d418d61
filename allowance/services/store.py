"""Activity store - table-oriented access to the relational backend.

Callers address rows by table name and exchange plain dictionaries, the
same shape the hosted backend hands the web client. Each call runs in its
own session and commits on its own, so nothing is held between a read and
a later write.
"""

import logging
from typing import Any

from sqlalchemy import inspect as sa_inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from allowance.core.exceptions import StoreReadError, StoreWriteError, UnknownTableError
from allowance.models import Badge, BadgeBonusGrant, Goal, Task, Transaction, User, UserBadge

logger = logging.getLogger(__name__)

Row = dict[str, Any]

TABLES = {
    "users": User,
    "badges": Badge,
    "user_badges": UserBadge,
    "badge_bonus_grants": BadgeBonusGrant,
    "tasks": Task,
    "goals": Goal,
    "transactions": Transaction,
}


def row_to_dict(obj: Any) -> Row:
    """Flatten an ORM instance into a column-keyed dictionary."""
    return {attr.key: getattr(obj, attr.key) for attr in sa_inspect(obj).mapper.column_attrs}


class ActivityStore:
    """Query/insert/update/delete rows by table name."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise UnknownTableError(f"Unknown table: {table}", table=table) from None

    @staticmethod
    def _check_columns(model, table: str, names, error_cls, operation: str) -> None:
        columns = {attr.key for attr in sa_inspect(model).column_attrs}
        unknown = [name for name in names if name not in columns]
        if unknown:
            raise error_cls(
                f"Unknown column(s) for {table}: {', '.join(sorted(unknown))}",
                table=table,
                operation=operation,
            )

    def _select(self, table: str, filters: dict[str, Any] | None, order_by: str | None, descending: bool):
        model = self._model(table)
        filters = filters or {}
        names = list(filters) + ([order_by] if order_by else [])
        self._check_columns(model, table, names, StoreReadError, "query")

        query = select(model)
        for column, value in filters.items():
            query = query.where(getattr(model, column) == value)
        if order_by:
            column = getattr(model, order_by)
            query = query.order_by(column.desc() if descending else column)
        return query

    async def query_rows(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Row]:
        """Return every row of ``table`` matching the equality ``filters``."""
        query = self._select(table, filters, order_by, descending)
        try:
            async with self._session_maker() as session:
                result = await session.execute(query)
                return [row_to_dict(obj) for obj in result.scalars().all()]
        except (SQLAlchemyError, OSError) as exc:
            raise StoreReadError(f"Failed to query {table}: {exc}", table=table, operation="query") from exc

    async def get_row(self, table: str, filters: dict[str, Any]) -> Row | None:
        """Return the single matching row, or None. More than one match is an error."""
        rows = await self.query_rows(table, filters)
        if len(rows) > 1:
            raise StoreReadError(
                f"Expected at most one {table} row for {filters}, found {len(rows)}",
                table=table,
                operation="query",
            )
        return rows[0] if rows else None

    async def insert_row(self, table: str, fields: dict[str, Any]) -> Row:
        model = self._model(table)
        self._check_columns(model, table, fields, StoreWriteError, "insert")
        try:
            async with self._session_maker() as session:
                obj = model(**fields)
                session.add(obj)
                await session.commit()
                await session.refresh(obj)
                return row_to_dict(obj)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreWriteError(f"Failed to insert into {table}: {exc}", table=table, operation="insert") from exc

    async def update_row(self, table: str, row_id: str, fields: dict[str, Any]) -> Row:
        model = self._model(table)
        self._check_columns(model, table, fields, StoreWriteError, "update")
        try:
            async with self._session_maker() as session:
                obj = await session.get(model, row_id)
                if obj is None:
                    raise StoreWriteError(
                        f"No {table} row with id {row_id}",
                        table=table,
                        operation="update",
                    )
                for key, value in fields.items():
                    setattr(obj, key, value)
                await session.commit()
                await session.refresh(obj)
                return row_to_dict(obj)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreWriteError(f"Failed to update {table}/{row_id}: {exc}", table=table, operation="update") from exc

    async def delete_row(self, table: str, row_id: str) -> None:
        model = self._model(table)
        try:
            async with self._session_maker() as session:
                obj = await session.get(model, row_id)
                if obj is None:
                    logger.debug("Delete of missing %s row %s ignored", table, row_id)
                    return
                await session.delete(obj)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreWriteError(f"Failed to delete {table}/{row_id}: {exc}", table=table, operation="delete") from exc
