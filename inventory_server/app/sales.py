"""
POS sales: one transactions row per sale plus its line items, with the stock
deduction and the movement ledger written in the same database transaction.
"""
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .errors import Conflict, Forbidden, NotFound, ValidationFailed
from .inventory import StockLine, parse_stock_lines, process_return_stock, process_sale_deductions

MAX_SALES_LIMIT = 5000
DEFAULT_SALES_LIMIT = 500


def receipt_id_for(sale_id: str, now: Optional[datetime] = None) -> str:
    ts = now or datetime.now(timezone.utc)
    return f"R-{ts.strftime('%Y%m%d')}-{sale_id.replace('-', '')[:8].upper()}"


def _money(v) -> Decimal:
    if v is None:
        return Decimal("0")
    try:
        return Decimal(str(v))
    except ArithmeticError:
        raise ValidationFailed("amounts must be numeric") from None


def _sale_response(row: dict) -> dict:
    created = row.get("created_at")
    return {
        "id": str(row["id"]),
        "receiptId": row.get("receipt_id") or "",
        "createdAt": created.isoformat() if hasattr(created, "isoformat") else str(created or ""),
    }


def record_sale(
    cur,
    *,
    warehouse_id: str,
    items: List[Dict[str, Any]],
    payment_method: str,
    sale_id: Optional[str] = None,
    customer_name: Optional[str] = None,
    subtotal=None,
    discount_pct=None,
    discount_amt=None,
    total=None,
    cashier: Optional[str] = None,
) -> dict:
    """
    Insert the sale and deduct its stock. A sale id that already exists is
    returned as-is without touching stock again.
    """
    if not (warehouse_id or "").strip():
        raise ValidationFailed("warehouseId is required")
    if not (payment_method or "").strip():
        raise ValidationFailed("paymentMethod is required")
    lines = parse_stock_lines(items)

    if sale_id:
        cur.execute(
            "SELECT id, receipt_id, created_at FROM transactions WHERE id = %s",
            (sale_id,),
        )
        existing = cur.fetchone()
        if existing:
            return _sale_response(existing)

    sid = sale_id or str(uuid.uuid4())
    receipt_id = receipt_id_for(sid)
    cur.execute(
        """
        INSERT INTO transactions
          (id, warehouse_id, receipt_id, customer_name, payment_method,
           subtotal, discount_pct, discount_amt, total, cashier, status, created_at)
        VALUES
          (%s, %s, %s, NULLIF(trim(%s), ''), %s, %s, %s, %s, %s, %s, 'completed', now())
        RETURNING id, receipt_id, created_at
        """,
        (
            sid,
            warehouse_id,
            receipt_id,
            customer_name or "",
            payment_method.strip(),
            _money(subtotal),
            _money(discount_pct),
            _money(discount_amt),
            _money(total),
            cashier,
        ),
    )
    row = cur.fetchone()

    for raw, line in zip(items, lines):
        unit_price = _money(_item_value(raw, "unitPrice", "unit_price"))
        line_total = _item_value(raw, "lineTotal", "line_total")
        cur.execute(
            """
            INSERT INTO transaction_items
              (id, transaction_id, product_id, size_code, quantity, unit_price, line_total, name, sku)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                sid,
                line.product_id,
                line.size_code,
                line.quantity,
                unit_price,
                _money(line_total) if line_total is not None else unit_price * line.quantity,
                _item_value(raw, "name"),
                _item_value(raw, "sku"),
            ),
        )

    process_sale_deductions(cur, warehouse_id, lines, reference_type="sale", transaction_id=sid)
    return _sale_response(row)


def _item_value(raw, *names):
    for n in names:
        v = raw.get(n) if isinstance(raw, dict) else getattr(raw, n, None)
        if v is not None:
            return v
    return None


def list_sales(
    cur,
    warehouse_id: str,
    *,
    day: Optional[date] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    if not (warehouse_id or "").strip():
        raise ValidationFailed("warehouse_id is required")
    lim = DEFAULT_SALES_LIMIT if limit is None else min(max(int(limit), 0), MAX_SALES_LIMIT)
    where = ["warehouse_id = %s"]
    params: List[Any] = [warehouse_id]
    if day is not None:
        where.append("created_at::date = %s")
        params.append(day)
    cur.execute(
        f"""
        SELECT id, warehouse_id, receipt_id, customer_name, payment_method,
               subtotal, discount_pct, discount_amt, total, status, voided_at, created_at
        FROM transactions
        WHERE {" AND ".join(where)}
        ORDER BY created_at DESC
        LIMIT %s
        """,
        (*params, lim),
    )
    rows = cur.fetchall()
    data = [
        {
            "id": str(r["id"]),
            "warehouseId": str(r["warehouse_id"]),
            "receiptId": r.get("receipt_id") or "",
            "customerName": r.get("customer_name"),
            "paymentMethod": r.get("payment_method") or "",
            "subtotal": float(r.get("subtotal") or 0),
            "discountPct": float(r.get("discount_pct") or 0),
            "discountAmt": float(r.get("discount_amt") or 0),
            "total": float(r.get("total") or 0),
            "status": r.get("status") or "completed",
            "voidedAt": r["voided_at"].isoformat() if r.get("voided_at") else None,
            "createdAt": r["created_at"].isoformat() if r.get("created_at") else None,
        }
        for r in rows
    ]
    return {"data": data, "total": len(data)}


def void_sale(
    cur,
    sale_id: str,
    voided_by: Optional[str] = None,
    *,
    allowed_warehouse_id: Optional[str] = None,
) -> dict:
    """Restore the sale's stock and mark it voided. A sale is voided at most once."""
    if not (sale_id or "").strip():
        raise ValidationFailed("saleId is required")
    cur.execute(
        "SELECT id, warehouse_id, voided_at FROM transactions WHERE id = %s FOR UPDATE",
        (sale_id,),
    )
    sale = cur.fetchone()
    if not sale:
        raise NotFound("Sale not found")
    if allowed_warehouse_id and str(sale["warehouse_id"]) != allowed_warehouse_id:
        raise Forbidden("Sale belongs to another warehouse")
    if sale.get("voided_at"):
        raise Conflict("Sale is already voided")

    cur.execute(
        "SELECT product_id, size_code, quantity FROM transaction_items WHERE transaction_id = %s",
        (sale_id,),
    )
    lines = [
        StockLine(str(r["product_id"]), int(r["quantity"]), r.get("size_code") or None)
        for r in cur.fetchall()
        if int(r["quantity"] or 0) > 0
    ]
    warehouse_id = str(sale["warehouse_id"])
    if lines:
        process_return_stock(cur, warehouse_id, lines, reference_type="void", transaction_id=sale_id)
    cur.execute(
        "UPDATE transactions SET voided_at = now(), voided_by = %s, status = 'voided' WHERE id = %s",
        (voided_by, sale_id),
    )
    return {"id": str(sale_id), "warehouseId": warehouse_id, "voided": True, "restoredLines": len(lines)}


def sales_totals_by_warehouse(cur, day: date, warehouse_id: Optional[str] = None) -> Dict[str, float]:
    """Sum of sale totals per warehouse for one calendar day. Voided sales are left out."""
    where = ["created_at::date = %s", "voided_at IS NULL"]
    params: List[Any] = [day]
    if warehouse_id:
        where.append("warehouse_id = %s")
        params.append(warehouse_id)
    cur.execute(
        f"""
        SELECT warehouse_id, COALESCE(SUM(total), 0) AS total
        FROM transactions
        WHERE {" AND ".join(where)}
        GROUP BY warehouse_id
        """,
        tuple(params),
    )
    return {str(r["warehouse_id"]): float(r["total"] or 0) for r in cur.fetchall() if r.get("warehouse_id")}
