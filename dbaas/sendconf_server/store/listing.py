"""
Paged listing of entities filtered by permissions.

list_with_permissions_tx turns a FROM clause and a column map into a page
of rows visible to the caller, with optional substring search and ordering.

Invariants:
    - Regular callers only ever see rows they hold the operation on
    - Only columns from the column map can appear in ORDER BY
    - Search input is passed as a bound parameter, never interpolated
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..context import Context
from ..errors import ValidationError
from .database import Transaction


@dataclass(frozen=True)
class ListingParams:
    """Listing request.

    Attributes:
        offset: Rows to skip
        limit: Maximum rows to return
        search: Case-insensitive substring matched against search columns
        order_by: Result column alias to order by
        descending: Reverse ordering
    """

    offset: int = 0
    limit: int = 50
    search: str | None = None
    order_by: str | None = None
    descending: bool = False


@dataclass
class Page:
    """One page of listing results.

    Attributes:
        rows: Result rows keyed by column alias
        total: Rows visible to the caller
        filtered: Visible rows matching the search
        offset: Offset of this page
        limit: Requested page size
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0
    filtered: int = 0
    offset: int = 0
    limit: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.rows) < self.filtered

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": self.rows,
            "total": self.total,
            "filtered": self.filtered,
            "offset": self.offset,
            "limit": self.limit,
            "has_more": self.has_more,
        }


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def list_with_permissions_tx(
    tx: Transaction,
    context: Context,
    entity_type: str,
    operation: str,
    from_clause: str,
    id_column: str,
    columns: Mapping[str, str],
    params: ListingParams,
    search_columns: Sequence[str] = (),
) -> Page:
    """List rows of an entity type visible to the caller.

    Args:
        tx: Current transaction
        context: Caller context
        entity_type: Entity type checked in the permissions table
        operation: Operation required to see a row
        from_clause: SQL FROM clause (tables and joins)
        id_column: SQL expression of the entity id
        columns: Result alias -> SQL expression
        params: Paging, search and ordering
        search_columns: Aliases matched by params.search

    Returns:
        Page of rows

    Raises:
        ValidationError: Unknown order_by column or negative paging values
    """
    if params.offset < 0 or params.limit < 1:
        raise ValidationError("offset must be >= 0 and limit >= 1")

    conditions: list[str] = []
    args: list[Any] = []

    if not context.is_admin:
        conditions.append(
            "EXISTS (SELECT 1 FROM permissions p WHERE p.entity_type = ? "
            f"AND p.entity = {id_column} AND p.user = ? AND p.operation = ?)"
        )
        args.extend([entity_type, context.user.id, operation])

    def where() -> str:
        return f" WHERE {' AND '.join(conditions)}" if conditions else ""

    total = tx.execute(f"SELECT COUNT(*) FROM {from_clause}{where()}", args).fetchone()[0]

    if params.search and search_columns:
        pattern = f"%{_escape_like(params.search)}%"
        conditions.append(
            "("
            + " OR ".join(f"{columns[alias]} LIKE ? ESCAPE '\\'" for alias in search_columns)
            + ")"
        )
        args.extend([pattern] * len(search_columns))
        filtered = tx.execute(f"SELECT COUNT(*) FROM {from_clause}{where()}", args).fetchone()[0]
    else:
        filtered = total

    order_by = params.order_by or next(iter(columns))
    if order_by not in columns:
        raise ValidationError(f"Cannot order by '{order_by}'", field_name="order_by")
    direction = "DESC" if params.descending else "ASC"

    select = ", ".join(f'{expr} AS "{alias}"' for alias, expr in columns.items())
    rows = tx.fetchall(
        f"SELECT {select} FROM {from_clause}{where()} "
        f"ORDER BY {columns[order_by]} {direction}, {id_column} ASC LIMIT ? OFFSET ?",
        [*args, params.limit, params.offset],
    )

    return Page(rows=rows, total=total, filtered=filtered, offset=params.offset, limit=params.limit)
