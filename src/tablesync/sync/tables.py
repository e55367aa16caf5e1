"""
Registry of the warehouse tables that can be synced, and row transforms.

Each table is identified locally by a short id (`taskdetail`, `orders`, ...)
and remotely by its data-lake name (`CSWMS_wmwhse_TASKDETAIL`, ...). Rows
are upserted by their natural key, which always starts with WHSEID.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from tablesync.errors import ValidationError
from tablesync.timeutil import isoformat

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableSpec:
    table_id: str
    table_name: str
    description: str
    remote_table: str
    key_fields: Tuple[str, ...]
    date_fields: Tuple[str, ...] = ()
    numeric_fields: Tuple[str, ...] = ()
    watermark_column: str = "ADDDATE"
    order_column: str = "SERIALKEY"


TABLES: Dict[str, TableSpec] = {
    spec.table_id: spec
    for spec in (
        TableSpec(
            table_id="taskdetail",
            table_name="Task Detail",
            description="Warehouse tasks and operations",
            remote_table="CSWMS_wmwhse_TASKDETAIL",
            key_fields=("WHSEID", "TASKDETAILKEY"),
            date_fields=(
                "STARTTIME", "ENDTIME", "RELEASEDATE", "ADDDATE", "EDITDATE",
                "ORIGINALSTARTTIME", "ORIGINALENDTIME", "REQUESTEDSHIPDATE",
            ),
            numeric_fields=("UOMQTY", "QTY", "TAREWGT", "NETWGT", "GROSSWGT"),
        ),
        TableSpec(
            table_id="receipt",
            table_name="Receipt",
            description="Warehouse receipts",
            remote_table="CSWMS_wmwhse_RECEIPT",
            key_fields=("WHSEID", "RECEIPTKEY"),
            date_fields=(
                "RECEIPTDATE", "STATUSDATE", "SCHEDULEDARRIVALDATE", "ACTUALARRIVALDATE",
                "CLOSEDDATE", "ADDDATE", "EDITDATE", "EFFECTIVEDATE",
            ),
            numeric_fields=(
                "TOTALCUBIC", "TOTALGROSS", "TOTALNET", "TOTALCASES", "TOTALPALLETS",
                "TOTALVALUE", "TOTALLINES", "TOTALUNITS", "TOTALWEIGHT",
            ),
        ),
        TableSpec(
            table_id="receiptdetail",
            table_name="Receipt Detail",
            description="Warehouse receipt line items",
            remote_table="CSWMS_wmwhse_RECEIPTDETAIL",
            key_fields=("WHSEID", "RECEIPTKEY", "RECEIPTLINENUMBER"),
            date_fields=("STATUSDATE", "ADDDATE", "EDITDATE", "EFFECTIVEDATE"),
            numeric_fields=("QTYEXPECTED", "QTYRECEIVED", "QTYREJECTED", "UOMQTY"),
        ),
        TableSpec(
            table_id="orders",
            table_name="Orders",
            description="Customer orders",
            remote_table="CSWMS_wmwhse_ORDERS",
            key_fields=("WHSEID", "ORDERKEY"),
            date_fields=("ORDERDATE", "DELIVERYDATE", "ADDDATE", "EDITDATE"),
        ),
        TableSpec(
            table_id="orderdetail",
            table_name="Order Detail",
            description="Customer order line items",
            remote_table="CSWMS_wmwhse_ORDERDETAIL",
            key_fields=("WHSEID", "ORDERKEY", "ORDERLINENUMBER"),
            date_fields=("ADDDATE", "EDITDATE"),
            numeric_fields=(
                "QTYORDERED", "QTYPICKED", "QTYSHIPPED", "OPENQTY",
                "ALLOCATEDQTY", "PICKEDQTY", "SHIPPEDQTY", "UOMQTY",
            ),
        ),
    )
}


def get_table_spec(table_id: str) -> TableSpec:
    spec = TABLES.get((table_id or "").lower())
    if spec is None:
        raise ValidationError(
            f"Unknown table {table_id!r}. Valid tables: {', '.join(TABLES)}"
        )
    return spec


# ── Row transforms ────────────────────────────────────────────────────────────

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string to naive UTC; None when it is not one."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def normalize_timestamp(value: Any) -> Optional[str]:
    parsed = parse_timestamp(value)
    return isoformat(parsed) if parsed is not None else None


def transform_row(spec: TableSpec, row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Copy of `row` with date fields as ISO-8601 UTC strings and numeric
    fields as floats. Values that do not parse are kept as received.
    """
    doc = dict(row)
    for name in spec.date_fields:
        value = doc.get(name)
        if value in (None, ""):
            continue
        normalized = normalize_timestamp(value)
        if normalized is None:
            logger.warning("Unparseable date in %s.%s: %r", spec.table_id, name, value)
        else:
            doc[name] = normalized
    for name in spec.numeric_fields:
        value = doc.get(name)
        if value in (None, "") or isinstance(value, bool):
            continue
        try:
            doc[name] = float(value)
        except (TypeError, ValueError):
            logger.warning("Unparseable number in %s.%s: %r", spec.table_id, name, value)
    return doc


def record_key(spec: TableSpec, row: Dict[str, Any]) -> str:
    """Natural key of a row, e.g. "wmwhse1|0000123"."""
    parts = []
    for name in spec.key_fields:
        value = row.get(name)
        if value is None or str(value).strip() == "":
            raise ValidationError(f"{spec.table_id} row is missing key field {name}")
        parts.append(str(value).strip())
    return "|".join(parts)


def high_water_mark(spec: TableSpec, rows: Iterable[Dict[str, Any]]) -> Optional[str]:
    """Largest watermark timestamp among `rows`, or None when none parse."""
    best: Optional[datetime] = None
    for row in rows:
        parsed = parse_timestamp(row.get(spec.watermark_column))
        if parsed is not None and (best is None or parsed > best):
            best = parsed
    return isoformat(best) if best is not None else None
