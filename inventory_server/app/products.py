import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .errors import Conflict, NotFound, ValidationFailed
from .inventory import get_quantities_by_size, normalize_size_rows, save_sizes, set_quantity

DEFAULT_LIST_LIMIT = 500
MAX_LIST_LIMIT = 2000
# Used for the low-stock filter when a product has no reorder level of its own.
DEFAULT_LOW_STOCK_THRESHOLD = 3

VERSION_CONFLICT_MESSAGE = "Product was updated by someone else. Please refresh and try again."

PRODUCT_COLUMNS = """
    p.id, p.warehouse_id, p.sku, p.barcode, p.name, p.description, p.category,
    p.size_kind, p.selling_price, p.cost_price, p.reorder_level,
    p.location, p.supplier, p.tags, p.images, p.version, p.created_at, p.updated_at
"""

# Writable column -> is jsonb
WRITABLE_COLUMNS: Dict[str, bool] = {
    "sku": False,
    "barcode": False,
    "name": False,
    "description": False,
    "category": False,
    "size_kind": False,
    "selling_price": False,
    "cost_price": False,
    "reorder_level": False,
    "location": True,
    "supplier": True,
    "tags": True,
    "images": True,
    "expiry_date": False,
    "warehouse_id": False,
}


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIST_LIMIT
    return min(max(int(limit), 1), MAX_LIST_LIMIT)


def _num(v) -> float:
    if v is None:
        return 0.0
    if isinstance(v, Decimal):
        return float(v)
    try:
        return float(v)
    except (TypeError, ValueError):
        return 0.0


def _iso(v) -> str:
    if v is None:
        return ""
    return v.isoformat() if hasattr(v, "isoformat") else str(v)


def _row_to_product(row: dict, aggregate: int, sizes: List[dict]) -> dict:
    sizes = sorted(sizes, key=lambda s: s["sizeCode"])
    is_sized = (row.get("size_kind") or "na") == "sized" and len(sizes) > 0
    quantity = sum(int(s["quantity"]) for s in sizes) if is_sized else int(aggregate or 0)
    tags = row.get("tags")
    images = row.get("images")
    return {
        "id": str(row["id"]),
        "warehouseId": str(row.get("warehouse_id") or ""),
        "sku": row.get("sku") or "",
        "barcode": row.get("barcode") or None,
        "name": row.get("name") or "",
        "description": row.get("description") or None,
        "category": row.get("category") or "",
        "sizeKind": row.get("size_kind") or "na",
        "sellingPrice": _num(row.get("selling_price")),
        "costPrice": _num(row.get("cost_price")),
        "reorderLevel": int(row.get("reorder_level") or 0),
        "quantity": quantity,
        "quantityBySize": sizes,
        "location": row.get("location"),
        "supplier": row.get("supplier"),
        "tags": tags if isinstance(tags, list) else [],
        "images": images if isinstance(images, list) else [],
        "version": int(row.get("version") or 0),
        "createdAt": _iso(row.get("created_at")),
        "updatedAt": _iso(row.get("updated_at")),
    }


def is_low_stock(product: dict) -> bool:
    threshold = product["reorderLevel"] or DEFAULT_LOW_STOCK_THRESHOLD
    return product["quantity"] <= threshold


def list_products(
    cur,
    warehouse_id: Optional[str] = None,
    *,
    limit: Optional[int] = None,
    offset: int = 0,
    q: Optional[str] = None,
    category: Optional[str] = None,
    low_stock: bool = False,
    out_of_stock: bool = False,
) -> Dict[str, Any]:
    """
    Page of products ordered by name. The stock filters apply to the fetched
    page; total is the number of rows matching the text filters.
    """
    lim = clamp_limit(limit)
    off = max(int(offset or 0), 0)

    where = []
    params: List[Any] = []
    if warehouse_id:
        where.append("p.warehouse_id = %s")
        params.append(warehouse_id)
    if (q or "").strip():
        needle = f"%{q.strip()}%"
        where.append("(p.name ILIKE %s OR p.sku ILIKE %s)")
        params.extend([needle, needle])
    if (category or "").strip():
        where.append("p.category = %s")
        params.append(category.strip())
    where_sql = ("WHERE " + " AND ".join(where)) if where else ""

    cur.execute(
        f"""
        SELECT {PRODUCT_COLUMNS},
               COALESCE(wi.quantity, 0) AS inventory_quantity,
               count(*) OVER() AS total_count
        FROM warehouse_products p
        LEFT JOIN warehouse_inventory wi
          ON wi.product_id = p.id AND wi.warehouse_id = p.warehouse_id
        {where_sql}
        ORDER BY p.name
        LIMIT %s OFFSET %s
        """,
        (*params, lim, off),
    )
    rows = cur.fetchall()
    total = int(rows[0]["total_count"]) if rows else 0

    size_map: Dict[str, List[dict]] = {}
    if warehouse_id and rows:
        cur.execute(
            """
            SELECT b.product_id, b.size_code, b.quantity, sc.size_label
            FROM warehouse_inventory_by_size b
            LEFT JOIN size_codes sc ON sc.size_code = b.size_code
            WHERE b.warehouse_id = %s AND b.product_id = ANY(%s)
            """,
            (warehouse_id, [r["id"] for r in rows]),
        )
        for s in cur.fetchall():
            size_map.setdefault(str(s["product_id"]), []).append(
                {
                    "sizeCode": str(s["size_code"]),
                    "sizeLabel": s.get("size_label") or str(s["size_code"]),
                    "quantity": int(s["quantity"] or 0),
                }
            )

    data = []
    for r in rows:
        product = _row_to_product(r, r.get("inventory_quantity"), size_map.get(str(r["id"]), []))
        if low_stock and not is_low_stock(product):
            continue
        if out_of_stock and product["quantity"] > 0:
            continue
        data.append(product)
    return {"data": data, "total": total}


def get_product(cur, product_id: str, warehouse_id: Optional[str] = None) -> dict:
    cur.execute(
        f"""
        SELECT {PRODUCT_COLUMNS}
        FROM warehouse_products p
        WHERE p.id = %s
        """,
        (product_id,),
    )
    row = cur.fetchone()
    if not row:
        raise NotFound("Product not found")
    wid = str(row.get("warehouse_id") or "")
    if warehouse_id and wid and warehouse_id != wid:
        raise NotFound("Product not found")
    wid = warehouse_id or wid
    cur.execute(
        """
        SELECT quantity
        FROM warehouse_inventory
        WHERE warehouse_id = %s AND product_id = %s
        """,
        (wid, product_id),
    )
    inv = cur.fetchone()
    sizes = get_quantities_by_size(cur, wid, product_id)
    return _row_to_product(row, inv["quantity"] if inv else 0, sizes)


def _column_values(fields: Dict[str, Any]):
    cols, vals, casts = [], [], []
    for k, v in fields.items():
        if k not in WRITABLE_COLUMNS:
            continue
        is_json = WRITABLE_COLUMNS[k]
        cols.append(k)
        vals.append(json.dumps(v) if is_json else v)
        casts.append("%s::jsonb" if is_json else "%s")
    return cols, vals, casts


def create_product(
    cur,
    fields: Dict[str, Any],
    *,
    warehouse_id: str,
    quantity=None,
    quantity_by_size=None,
    created_by: Optional[str] = None,
) -> str:
    """
    Insert the product row, then its aggregate inventory (and size rows when
    given). Returns the new product id.
    """
    if not (fields.get("name") or "").strip():
        raise ValidationFailed("name is required")
    size_rows = normalize_size_rows(quantity_by_size) if quantity_by_size else []
    fields = dict(fields, warehouse_id=warehouse_id)
    if size_rows:
        fields["size_kind"] = "sized"

    cols, vals, casts = _column_values(fields)
    cols.append("created_by")
    vals.append(created_by or "")
    casts.append("%s")
    cur.execute(
        f"""
        INSERT INTO warehouse_products (id, {", ".join(cols)}, version, created_at, updated_at)
        VALUES (gen_random_uuid(), {", ".join(casts)}, 0, now(), now())
        RETURNING id
        """,
        tuple(vals),
    )
    product_id = str(cur.fetchone()["id"])
    if size_rows:
        save_sizes(cur, product_id, warehouse_id, size_rows)
    else:
        set_quantity(cur, warehouse_id, product_id, quantity)
    return product_id


def update_product(
    cur,
    product_id: str,
    expected_version: int,
    fields: Dict[str, Any],
    *,
    warehouse_id: Optional[str] = None,
    quantity=None,
    quantity_by_size=None,
) -> dict:
    """
    Optimistic update: the row is written only while its version still equals
    expected_version, and the version then advances by one.

    quantity_by_size, when not None, replaces the size breakdown (an empty list
    clears it and keeps `quantity` as the aggregate). Otherwise a given
    quantity overwrites the aggregate.
    """
    fields = dict(fields)
    fields.pop("warehouse_id", None)
    if quantity_by_size and normalize_size_rows(quantity_by_size) and "size_kind" not in fields:
        fields["size_kind"] = "sized"

    cols, vals, casts = _column_values(fields)
    sets = [f"{c} = {cast}" for c, cast in zip(cols, casts)]
    sets.append("version = version + 1")
    sets.append("updated_at = now()")
    cur.execute(
        f"""
        UPDATE warehouse_products
        SET {", ".join(sets)}
        WHERE id = %s AND version = %s
        RETURNING id, warehouse_id, version
        """,
        (*vals, product_id, int(expected_version)),
    )
    row = cur.fetchone()
    if not row:
        cur.execute("SELECT version FROM warehouse_products WHERE id = %s", (product_id,))
        if not cur.fetchone():
            raise NotFound("Product not found")
        raise Conflict(VERSION_CONFLICT_MESSAGE)

    wid = warehouse_id or str(row.get("warehouse_id") or "")
    if quantity_by_size is not None:
        save_sizes(cur, product_id, wid, quantity_by_size, total_override=quantity)
    elif quantity is not None:
        set_quantity(cur, wid, product_id, quantity)
    return {"id": str(row["id"]), "warehouseId": wid, "version": int(row["version"])}


def delete_product(cur, product_id: str) -> None:
    cur.execute("DELETE FROM warehouse_products WHERE id = %s RETURNING id", (product_id,))
    if not cur.fetchone():
        raise NotFound("Product not found")


def delete_products_bulk(cur, ids: List[str]) -> int:
    clean = [str(i).strip() for i in (ids or []) if str(i or "").strip()]
    if not clean:
        raise ValidationFailed("ids must be a non-empty array")
    cur.execute("DELETE FROM warehouse_products WHERE id = ANY(%s) RETURNING id", (clean,))
    return len(cur.fetchall())
