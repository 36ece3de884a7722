from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

from flowsynth.services.errors import PersistenceError
from flowsynth.storage.base import Row

TABLES = ("research_input", "requirement", "flow_node", "flow_edge")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """Dict-backed row store for tests and local runs."""

    def __init__(self, tables: Iterable[str] = TABLES) -> None:
        self._tables: Dict[str, Dict[str, Row]] = {t: {} for t in tables}

    def _table(self, table: str) -> Dict[str, Row]:
        if table not in self._tables:
            raise PersistenceError(f"unknown table '{table}'")
        return self._tables[table]

    def _prepare(self, row: Mapping[str, Any]) -> Row:
        if not isinstance(row, Mapping):
            raise PersistenceError("row must be a mapping")
        now = _now()
        out = dict(row)
        out["id"] = str(out.get("id") or uuid4())
        out.setdefault("created_at", now)
        out.setdefault("updated_at", now)
        return out

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        rows = self._table(table)
        prepared = self._prepare(row)
        if prepared["id"] in rows:
            raise PersistenceError(f"duplicate id '{prepared['id']}' in {table}")
        rows[prepared["id"]] = prepared
        return dict(prepared)

    def insert_many(self, table: str, rows: Iterable[Mapping[str, Any]]) -> List[Row]:
        target = self._table(table)
        prepared = [self._prepare(r) for r in rows]
        ids = [r["id"] for r in prepared]
        if len(set(ids)) != len(ids) or any(i in target for i in ids):
            raise PersistenceError(f"duplicate id in batch insert into {table}")
        for r in prepared:
            target[r["id"]] = r
        return [dict(r) for r in prepared]

    def get(self, table: str, row_id: str) -> Optional[Row]:
        row = self._table(table).get(str(row_id))
        return dict(row) if row else None

    def update(self, table: str, row_id: str, values: Mapping[str, Any]) -> Optional[Row]:
        rows = self._table(table)
        row = rows.get(str(row_id))
        if row is None:
            return None
        row.update({k: v for k, v in values.items() if k != "id"})
        if "updated_at" not in values:
            row["updated_at"] = _now()
        return dict(row)

    @staticmethod
    def _matches(
        row: Row,
        filters: Optional[Mapping[str, Any]],
        contains: Optional[Mapping[str, Any]],
    ) -> bool:
        for key, value in (filters or {}).items():
            if row.get(key) != value:
                return False
        for key, value in (contains or {}).items():
            if value not in (row.get(key) or []):
                return False
        return True

    def delete(
        self,
        table: str,
        *,
        row_id: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
        contains: Optional[Mapping[str, Any]] = None,
    ) -> int:
        rows = self._table(table)
        if row_id is not None:
            return 1 if rows.pop(str(row_id), None) is not None else 0
        if not filters and not contains:
            raise PersistenceError("refusing unfiltered delete")
        doomed = [k for k, r in rows.items() if self._matches(r, filters, contains)]
        for k in doomed:
            del rows[k]
        return len(doomed)

    def select(
        self,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        contains: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Row]:
        out = [dict(r) for r in self._table(table).values() if self._matches(r, filters, contains)]
        if order_by:
            # sorted() is stable, so ties keep insertion order.
            out.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)))
        return out
