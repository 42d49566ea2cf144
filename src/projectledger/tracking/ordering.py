"""Dense sibling ordering for phases within a project and tasks within a phase.

Both hierarchies share the same contract: siblings live in one scope
(``project_id`` for phases, ``phase_id`` for tasks), read order is
``sort_order ASC, id ASC`` and a reorder call renumbers the scope to
``0..n-1`` inside the caller's transaction.
"""

from datetime import datetime
from typing import Sequence

from sqlalchemy import Column, Table, func, select, update
from sqlalchemy.engine import Connection

from ..exceptions import NotFoundError, ValidationError

_SCOPES = {
    "project_phases": "project_id",
    "project_tasks": "phase_id",
}


def scope_column(table: Table) -> Column:
    """Return the column that groups siblings of ``table``."""
    try:
        return table.c[_SCOPES[table.name]]
    except KeyError:
        raise ValueError(f"Table {table.name} has no sibling ordering") from None


def ordered(table: Table) -> tuple:
    """Deterministic read order, stable even when sort_order has gaps."""
    return (table.c.sort_order.asc(), table.c.id.asc())


def next_sort_order(conn: Connection, table: Table, scope_id: int) -> int:
    """Position for a new sibling: max(sort_order) + 1, or 0 for an empty scope."""
    current_max = conn.execute(
        select(func.max(table.c.sort_order)).where(scope_column(table) == scope_id)
    ).scalar()
    return 0 if current_max is None else current_max + 1


def apply_order(
    conn: Connection,
    table: Table,
    scope_id: int,
    ordered_ids: Sequence[int],
    entity: str,
) -> int:
    """Assign sort_order = index for every id in ``ordered_ids``.

    The ordering must name every sibling in the scope exactly once, so the
    result is always a dense 0..n-1 sequence. Each UPDATE is also guarded by
    the scope; an id that matches no row raises NotFoundError, which aborts
    the enclosing transaction.

    Returns:
        Number of rows renumbered.
    """
    if not ordered_ids:
        return 0

    if len(set(ordered_ids)) != len(ordered_ids):
        raise ValidationError(f"Duplicate ids in {entity} ordering", field="ordered_ids")

    scope = scope_column(table)
    sibling_ids = set(conn.execute(select(table.c.id).where(scope == scope_id)).scalars())
    for row_id in ordered_ids:
        if row_id not in sibling_ids:
            raise NotFoundError(entity, row_id)
    missing = sibling_ids - set(ordered_ids)
    if missing:
        raise ValidationError(
            f"{entity.capitalize()} ordering must include every sibling; "
            f"missing {sorted(missing)}",
            field="ordered_ids",
        )

    now = datetime.now()
    for index, row_id in enumerate(ordered_ids):
        result = conn.execute(
            update(table)
            .where(table.c.id == row_id)
            .where(scope == scope_id)
            .values(sort_order=index, updated_at=now)
        )
        if result.rowcount == 0:
            raise NotFoundError(entity, row_id)

    return len(ordered_ids)
