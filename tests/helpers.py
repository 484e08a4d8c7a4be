"""Small helpers shared by unit tests that mock the database session."""

from __future__ import annotations

from typing import Any, Iterable, Optional
from unittest.mock import MagicMock


def query_result(
    scalar: Any = None,
    *,
    scalars: Optional[Iterable[Any]] = None,
    rows: Optional[Iterable[Any]] = None,
    rowcount: int = 0,
) -> MagicMock:
    """Build a mock ``Result`` as returned by ``AsyncSession.execute``.

    Args:
        scalar: Value returned by ``scalar_one_or_none``, ``scalar_one``,
            ``scalar`` and ``scalars().first()``.
        scalars: Values returned by ``scalars().all()`` and by iterating
            ``scalars()``.
        rows: Values returned by ``all()``; ``first()`` returns the first one.
        rowcount: Value for ``rowcount`` (bulk UPDATE/DELETE statements).
    """
    scalar_list = list(scalars) if scalars is not None else ([scalar] if scalar is not None else [])
    row_list = list(rows or [])

    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalar_one.return_value = scalar
    result.scalar.return_value = scalar
    result.scalars.return_value.all.return_value = scalar_list
    result.scalars.return_value.__iter__.return_value = scalar_list
    result.scalars.return_value.first.return_value = scalar_list[0] if scalar_list else None
    result.all.return_value = row_list
    result.first.return_value = row_list[0] if row_list else None
    result.rowcount = rowcount
    return result


def added_objects(session: MagicMock, cls: type) -> list[Any]:
    """Return every object of type *cls* passed to ``session.add``."""
    return [
        call.args[0]
        for call in session.add.call_args_list
        if call.args and isinstance(call.args[0], cls)
    ]
