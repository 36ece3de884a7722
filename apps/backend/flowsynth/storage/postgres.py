from __future__ import annotations

import logging
import os
from typing import Any, Iterable, Mapping, Optional

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from flowsynth.services.errors import PersistenceError
from flowsynth.storage.base import Row

logger = logging.getLogger(__name__)

_RETURNING_ALL = sql.SQL(" returning *")


def _pg_url() -> str:
    url = os.getenv("FLOWSYNTH_PG_URL")
    if not url:
        raise RuntimeError("FLOWSYNTH_PG_URL not configured")
    return url


def _where(
    filters: Optional[Mapping[str, Any]],
    contains: Optional[Mapping[str, Any]],
) -> tuple[sql.Composable, list[Any]]:
    clauses: list[sql.Composable] = []
    params: list[Any] = []
    for key, value in (filters or {}).items():
        if value is None:
            clauses.append(sql.SQL("{} is null").format(sql.Identifier(key)))
        else:
            clauses.append(sql.SQL("{} = %s").format(sql.Identifier(key)))
            params.append(value)
    for key, value in (contains or {}).items():
        clauses.append(sql.SQL("%s = any({})").format(sql.Identifier(key)))
        params.append(value)
    if not clauses:
        return sql.SQL(""), params
    return sql.SQL(" where ") + sql.SQL(" and ").join(clauses), params


class PostgresStore:
    """Row store over psycopg. Each call opens its own autocommit connection."""

    def __init__(self, url: Optional[str] = None) -> None:
        self._url = url

    @property
    def url(self) -> str:
        return self._url or _pg_url()

    def _fetch(self, query: sql.Composable, params: Iterable[Any] = ()) -> list[Row]:
        try:
            with psycopg.connect(self.url, autocommit=True) as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, tuple(params))
                    if cur.description is None:
                        return []
                    return [_normalize(r) for r in cur.fetchall()]
        except psycopg.Error as exc:
            logger.exception("Postgres query failed")
            raise PersistenceError(f"store query failed: {exc}") from exc

    @staticmethod
    def _insert_query(table: str, row: Mapping[str, Any]) -> sql.Composed:
        cols = list(row.keys())
        return sql.SQL("insert into {} ({}) values ({})").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            sql.SQL(", ").join(sql.Placeholder() for _ in cols),
        ) + _RETURNING_ALL

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        rows = self._fetch(self._insert_query(table, row), row.values())
        if not rows:
            raise PersistenceError(f"insert into {table} returned no row")
        return rows[0]

    def insert_many(self, table: str, rows: Iterable[Mapping[str, Any]]) -> list[Row]:
        batch = [dict(r) for r in rows]
        if not batch:
            return []
        out: list[Row] = []
        try:
            with psycopg.connect(self.url) as conn:
                # One transaction: commit on clean exit, rollback on error.
                with conn.transaction():
                    with conn.cursor(row_factory=dict_row) as cur:
                        for row in batch:
                            cur.execute(self._insert_query(table, row), tuple(row.values()))
                            out.append(_normalize(cur.fetchone()))
        except psycopg.Error as exc:
            logger.exception("Postgres batch insert failed", extra={"table": table, "rows": len(batch)})
            raise PersistenceError(f"batch insert into {table} failed: {exc}") from exc
        return out

    def get(self, table: str, row_id: str) -> Optional[Row]:
        rows = self._fetch(
            sql.SQL("select * from {} where id = %s").format(sql.Identifier(table)),
            (row_id,),
        )
        return rows[0] if rows else None

    def update(self, table: str, row_id: str, values: Mapping[str, Any]) -> Optional[Row]:
        values = {k: v for k, v in values.items() if k != "id"}
        assignments = [sql.SQL("{} = %s").format(sql.Identifier(k)) for k in values]
        if "updated_at" not in values:
            assignments.append(sql.SQL("updated_at = now()"))
        query = sql.SQL("update {} set {} where id = %s").format(
            sql.Identifier(table),
            sql.SQL(", ").join(assignments),
        ) + _RETURNING_ALL
        rows = self._fetch(query, [*values.values(), row_id])
        return rows[0] if rows else None

    def delete(
        self,
        table: str,
        *,
        row_id: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
        contains: Optional[Mapping[str, Any]] = None,
    ) -> int:
        if row_id is not None:
            filters = {"id": row_id}
        if not filters and not contains:
            raise PersistenceError("refusing unfiltered delete")
        where, params = _where(filters, contains)
        query = sql.SQL("delete from {}").format(sql.Identifier(table)) + where + sql.SQL(" returning id")
        return len(self._fetch(query, params))

    def select(
        self,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        contains: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> list[Row]:
        where, params = _where(filters, contains)
        query = sql.SQL("select * from {}").format(sql.Identifier(table)) + where
        if order_by:
            query += sql.SQL(" order by {} asc").format(sql.Identifier(order_by))
        return self._fetch(query, params)


def _normalize(row: Optional[dict[str, Any]]) -> Row:
    # uuid columns come back as UUID objects; the core works with strings.
    out: Row = {}
    for key, value in (row or {}).items():
        if key == "id" or key.endswith("_id"):
            out[key] = str(value) if value is not None else None
        elif key.endswith("_ids") and isinstance(value, list):
            out[key] = [str(v) for v in value]
        else:
            out[key] = value
    return out
