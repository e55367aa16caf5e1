"""SQL text for the remote query service: paged selects and counts over a window."""
from dataclasses import dataclass
from typing import List, Optional

from tablesync.sync.tables import TableSpec


@dataclass(frozen=True)
class Window:
    """Watermark range; start inclusive, end exclusive, either side open when None."""

    start: Optional[str] = None
    end: Optional[str] = None


def quote_literal(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def _where(spec: TableSpec, whseid: Optional[str], window: Window) -> str:
    conditions: List[str] = []
    if whseid and whseid.lower() != "all":
        conditions.append(f"WHSEID = {quote_literal(whseid)}")
    if window.start:
        conditions.append(f"{spec.watermark_column} >= {quote_literal(window.start)}")
    if window.end:
        conditions.append(f"{spec.watermark_column} < {quote_literal(window.end)}")
    return f" WHERE {' AND '.join(conditions)}" if conditions else ""


def build_page_query(
    spec: TableSpec,
    whseid: Optional[str],
    window: Window,
    offset: int,
    limit: int,
) -> str:
    if offset < 0 or limit < 1:
        raise ValueError(f"invalid page offset={offset} limit={limit}")
    return (
        f'SELECT * FROM "{spec.remote_table}"'
        f"{_where(spec, whseid, window)}"
        f" ORDER BY {spec.watermark_column}, {spec.order_column}"
        f" LIMIT {int(limit)} OFFSET {int(offset)}"
    )


def build_count_query(spec: TableSpec, whseid: Optional[str], window: Window) -> str:
    return f'SELECT COUNT(*) AS count FROM "{spec.remote_table}"{_where(spec, whseid, window)}'
