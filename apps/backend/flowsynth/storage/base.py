from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Protocol

Row = dict[str, Any]


class RowStore(Protocol):
    """Row-oriented CRUD keyed by id and by parent foreign keys.

    `filters` are equality matches on columns; `contains` matches rows whose
    array column holds the given value (used for `source_input_ids`).
    A single `insert_many` call either fully succeeds or fully fails.
    """

    def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

    def insert_many(self, table: str, rows: Iterable[Mapping[str, Any]]) -> list[Row]: ...

    def get(self, table: str, row_id: str) -> Optional[Row]: ...

    def update(self, table: str, row_id: str, values: Mapping[str, Any]) -> Optional[Row]: ...

    def delete(
        self,
        table: str,
        *,
        row_id: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
        contains: Optional[Mapping[str, Any]] = None,
    ) -> int: ...

    def select(
        self,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        contains: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> list[Row]: ...
