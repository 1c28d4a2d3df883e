"""
Warehouse inventory bookkeeping.

Quantity lives per (warehouse, product) in warehouse_inventory. Sized products
also carry a per-size breakdown in warehouse_inventory_by_size; whenever that
breakdown is written, the aggregate is recomputed from it in the same
transaction, so the aggregate is never authoritative on its own for sized
products.

Every helper takes an open cursor and never commits: callers run them inside
`with conn.transaction():` so a batch either applies fully or not at all.
"""
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import Conflict, ValidationFailed
from .validation import normalize_size_code


@dataclass(frozen=True)
class StockLine:
    product_id: str
    quantity: int
    size_code: Optional[str] = None


@dataclass(frozen=True)
class SizeRow:
    size_code: str
    quantity: int


def _field(raw, *names):
    if isinstance(raw, dict):
        for n in names:
            if raw.get(n) is not None:
                return raw.get(n)
        return None
    for n in names:
        v = getattr(raw, n, None)
        if v is not None:
            return v
    return None


def _positive_int(value, what: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValidationFailed(f"{what} must be a positive integer")
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationFailed(f"{what} must be a positive integer") from None
    if not d.is_finite() or d != d.to_integral_value() or d <= 0:
        raise ValidationFailed(f"{what} must be a positive integer")
    return int(d)


def parse_stock_lines(items) -> List[StockLine]:
    """
    Validate a batch of stock movements before any store call.
    Accepts StockLine objects, pydantic models or dicts (productId / product_id).
    """
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationFailed("items must be a non-empty array")
    lines = []
    for idx, raw in enumerate(items):
        if isinstance(raw, StockLine):
            lines.append(raw)
            continue
        if raw is None:
            raise ValidationFailed(f"items[{idx}] is invalid")
        product_id = str(_field(raw, "productId", "product_id") or "").strip()
        if not product_id:
            raise ValidationFailed(f"items[{idx}].productId is required")
        qty = _positive_int(_field(raw, "quantity"), f"items[{idx}].quantity")
        size_raw = str(_field(raw, "sizeCode", "size_code") or "").strip()
        lines.append(StockLine(product_id, qty, normalize_size_code(size_raw) if size_raw else None))
    return lines


def _require_warehouse(warehouse_id: Optional[str]) -> str:
    wid = str(warehouse_id or "").strip()
    if not wid:
        raise ValidationFailed("warehouseId is required")
    return wid


def _floor_non_negative(value, what: str) -> int:
    if isinstance(value, bool):
        raise ValidationFailed(f"{what} must be a number")
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{what} must be a number") from None
    if math.isnan(f) or math.isinf(f):
        raise ValidationFailed(f"{what} must be a number")
    return max(0, math.floor(f))


def normalize_size_rows(rows: Optional[Iterable]) -> List[SizeRow]:
    """
    Rows with an empty size code are dropped; quantities are floored and
    clamped at zero. Repeated codes are merged.
    """
    merged: Dict[str, int] = {}
    for raw in rows or []:
        code_raw = str(_field(raw, "sizeCode", "size_code") or "").strip()
        if not code_raw:
            continue
        code = normalize_size_code(code_raw)
        qty = _floor_non_negative(_field(raw, "quantity"), f"quantity for size {code}")
        merged[code] = merged.get(code, 0) + qty
    return [SizeRow(code, qty) for code, qty in merged.items()]


def size_rows_total(rows: Sequence[SizeRow]) -> int:
    return sum(r.quantity for r in rows if r.quantity > 0)


def get_quantity(cur, warehouse_id: str, product_id: str) -> int:
    cur.execute(
        """
        SELECT quantity
        FROM warehouse_inventory
        WHERE warehouse_id = %s AND product_id = %s
        """,
        (warehouse_id, product_id),
    )
    row = cur.fetchone()
    return int(row["quantity"]) if row else 0


def set_quantity(cur, warehouse_id: str, product_id: str, quantity) -> int:
    """Absolute overwrite of the aggregate quantity (upsert)."""
    wid = _require_warehouse(warehouse_id)
    qty = _floor_non_negative(quantity, "quantity")
    cur.execute(
        """
        INSERT INTO warehouse_inventory (warehouse_id, product_id, quantity, updated_at)
        VALUES (%s, %s, %s, now())
        ON CONFLICT (warehouse_id, product_id) DO UPDATE
        SET quantity = EXCLUDED.quantity,
            updated_at = now()
        """,
        (wid, product_id, qty),
    )
    return qty


def get_quantities_by_size(cur, warehouse_id: str, product_id: str) -> List[dict]:
    cur.execute(
        """
        SELECT b.size_code, b.quantity, sc.size_label
        FROM warehouse_inventory_by_size b
        LEFT JOIN size_codes sc ON sc.size_code = b.size_code
        WHERE b.warehouse_id = %s AND b.product_id = %s
        ORDER BY b.size_code
        """,
        (warehouse_id, product_id),
    )
    return [
        {
            "sizeCode": str(r["size_code"]),
            "sizeLabel": r.get("size_label") or str(r["size_code"]),
            "quantity": int(r["quantity"] or 0),
        }
        for r in cur.fetchall()
    ]


def save_sizes(cur, product_id: str, warehouse_id: str, size_rows, *, total_override=None) -> int:
    """
    Replace the whole per-size breakdown for (warehouse, product) and persist the
    recomputed aggregate. Returns the new aggregate.

    total_override is only used when size_rows is empty (sizes cleared) so the
    caller can keep an explicit aggregate instead of dropping stock to zero.
    """
    wid = _require_warehouse(warehouse_id)
    rows = normalize_size_rows(size_rows)
    cur.execute(
        """
        DELETE FROM warehouse_inventory_by_size
        WHERE warehouse_id = %s AND product_id = %s
        """,
        (wid, product_id),
    )
    for r in rows:
        cur.execute(
            """
            INSERT INTO warehouse_inventory_by_size (warehouse_id, product_id, size_code, quantity, updated_at)
            VALUES (%s, %s, %s, %s, now())
            """,
            (wid, product_id, r.size_code, r.quantity),
        )
    total = size_rows_total(rows)
    if not rows and total_override is not None:
        total = total_override
    return set_quantity(cur, wid, product_id, total)


def sync_aggregate_from_sizes(cur, warehouse_id: str, product_id: str) -> int:
    """Set the aggregate to the sum of the product's size rows (upsert)."""
    cur.execute(
        """
        INSERT INTO warehouse_inventory (warehouse_id, product_id, quantity, updated_at)
        SELECT %s, %s, COALESCE(SUM(GREATEST(quantity, 0)), 0), now()
        FROM warehouse_inventory_by_size
        WHERE warehouse_id = %s AND product_id = %s
        ON CONFLICT (warehouse_id, product_id) DO UPDATE
        SET quantity = EXCLUDED.quantity,
            updated_at = now()
        RETURNING quantity
        """,
        (warehouse_id, product_id, warehouse_id, product_id),
    )
    row = cur.fetchone()
    return int(row["quantity"]) if row else 0


def _tracked_by_size(cur, warehouse_id: str, product_id: str) -> bool:
    # Same rule the product read path uses: sized and holding size rows.
    cur.execute(
        """
        SELECT p.size_kind,
               EXISTS (
                 SELECT 1 FROM warehouse_inventory_by_size b
                 WHERE b.warehouse_id = %s AND b.product_id = p.id
               ) AS has_sizes
        FROM warehouse_products p
        WHERE p.id = %s
        """,
        (warehouse_id, product_id),
    )
    row = cur.fetchone()
    return bool(row) and row.get("size_kind") == "sized" and bool(row.get("has_sizes"))


def _size_tracking(cur, warehouse_id: str, lines: List[StockLine]) -> List[bool]:
    """
    Per line: whether it moves a size row. Sized products must name a size;
    a size code on any other product only annotates the movement.
    """
    tracked = {}
    out = []
    for idx, line in enumerate(lines):
        if line.product_id not in tracked:
            tracked[line.product_id] = _tracked_by_size(cur, warehouse_id, line.product_id)
        if tracked[line.product_id] and not line.size_code:
            raise ValidationFailed(f"items[{idx}].sizeCode is required for sized product {line.product_id}")
        out.append(tracked[line.product_id])
    return out


def record_movement(
    cur,
    warehouse_id: str,
    line: StockLine,
    delta: int,
    reference_type: str,
    transaction_id: Optional[str] = None,
) -> None:
    cur.execute(
        """
        INSERT INTO stock_movements
          (id, transaction_id, warehouse_id, product_id, size_code, quantity_delta, reference_type)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
        """,
        (transaction_id, warehouse_id, line.product_id, line.size_code, delta, reference_type),
    )


DEFAULT_MOVEMENTS_LIMIT = 100
MAX_MOVEMENTS_LIMIT = 500


def list_stock_movements(
    cur,
    *,
    warehouse_id: Optional[str] = None,
    product_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Dict[str, object]:
    """Newest first. Read-only view of the movement ledger."""
    lim = DEFAULT_MOVEMENTS_LIMIT if limit is None else min(max(int(limit), 1), MAX_MOVEMENTS_LIMIT)
    off = max(int(offset or 0), 0)

    where = []
    params: List[object] = []
    for column, value in (
        ("warehouse_id", warehouse_id),
        ("product_id", product_id),
        ("transaction_id", transaction_id),
    ):
        if (value or "").strip():
            where.append(f"{column} = %s")
            params.append(value.strip())
    if since is not None:
        where.append("created_at >= %s")
        params.append(since)
    if until is not None:
        where.append("created_at <= %s")
        params.append(until)
    where_sql = ("WHERE " + " AND ".join(where)) if where else ""

    cur.execute(
        f"""
        SELECT id, transaction_id, warehouse_id, product_id, size_code,
               quantity_delta, reference_type, created_at,
               count(*) OVER() AS total_count
        FROM stock_movements
        {where_sql}
        ORDER BY created_at DESC
        LIMIT %s OFFSET %s
        """,
        (*params, lim, off),
    )
    rows = cur.fetchall()
    data = [
        {
            "id": str(r["id"]),
            "transactionId": str(r["transaction_id"]) if r.get("transaction_id") else None,
            "warehouseId": str(r["warehouse_id"]),
            "productId": str(r["product_id"]),
            "sizeCode": r.get("size_code"),
            "quantityDelta": int(r["quantity_delta"]),
            "referenceType": r.get("reference_type") or "",
            "createdAt": r["created_at"].isoformat() if r.get("created_at") else None,
        }
        for r in rows
    ]
    return {"data": data, "total": int(rows[0]["total_count"]) if rows else 0}


def process_sale_deductions(
    cur,
    warehouse_id: str,
    items,
    *,
    reference_type: str = "deduct",
    transaction_id: Optional[str] = None,
) -> List[StockLine]:
    """
    Deduct every line or none. A line that would take stock below zero raises
    Conflict(INSUFFICIENT_STOCK); the caller's transaction then rolls back the
    lines already applied.
    """
    wid = _require_warehouse(warehouse_id)
    lines = parse_stock_lines(items)
    by_size = _size_tracking(cur, wid, lines)
    for line, sized in zip(lines, by_size):
        if sized:
            cur.execute(
                """
                UPDATE warehouse_inventory_by_size
                SET quantity = quantity - %s,
                    updated_at = now()
                WHERE warehouse_id = %s AND product_id = %s AND size_code = %s AND quantity >= %s
                RETURNING quantity
                """,
                (line.quantity, wid, line.product_id, line.size_code, line.quantity),
            )
            if not cur.fetchone():
                raise Conflict(f"INSUFFICIENT_STOCK: product {line.product_id} size {line.size_code}")
            sync_aggregate_from_sizes(cur, wid, line.product_id)
        else:
            cur.execute(
                """
                UPDATE warehouse_inventory
                SET quantity = quantity - %s,
                    updated_at = now()
                WHERE warehouse_id = %s AND product_id = %s AND quantity >= %s
                RETURNING quantity
                """,
                (line.quantity, wid, line.product_id, line.quantity),
            )
            if not cur.fetchone():
                raise Conflict(f"INSUFFICIENT_STOCK: product {line.product_id}")
        record_movement(cur, wid, line, -line.quantity, reference_type, transaction_id)
    return lines


def process_return_stock(
    cur,
    warehouse_id: str,
    items,
    *,
    reference_type: str = "return",
    transaction_id: Optional[str] = None,
) -> List[StockLine]:
    """
    Add every line back (order returns / cancellations). Validation happens
    before the first statement; atomicity comes from the caller's transaction.
    """
    wid = _require_warehouse(warehouse_id)
    lines = parse_stock_lines(items)
    by_size = _size_tracking(cur, wid, lines)
    for line, sized in zip(lines, by_size):
        if sized:
            cur.execute(
                """
                INSERT INTO warehouse_inventory_by_size (warehouse_id, product_id, size_code, quantity, updated_at)
                VALUES (%s, %s, %s, %s, now())
                ON CONFLICT (warehouse_id, product_id, size_code) DO UPDATE
                SET quantity = warehouse_inventory_by_size.quantity + EXCLUDED.quantity,
                    updated_at = now()
                RETURNING quantity
                """,
                (wid, line.product_id, line.size_code, line.quantity),
            )
            sync_aggregate_from_sizes(cur, wid, line.product_id)
        else:
            cur.execute(
                """
                INSERT INTO warehouse_inventory (warehouse_id, product_id, quantity, updated_at)
                VALUES (%s, %s, %s, now())
                ON CONFLICT (warehouse_id, product_id) DO UPDATE
                SET quantity = warehouse_inventory.quantity + EXCLUDED.quantity,
                    updated_at = now()
                RETURNING quantity
                """,
                (wid, line.product_id, line.quantity),
            )
        record_movement(cur, wid, line, line.quantity, reference_type, transaction_id)
    return lines
