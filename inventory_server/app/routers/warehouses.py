import re
from fastapi import APIRouter, Depends
from typing import List, Optional

from ..db import get_conn
from ..deps import bound_warehouse_id, get_principal
from ..errors import NotFound
from ..security import SessionPrincipal

router = APIRouter(prefix="/api/warehouses", tags=["warehouses"])


def _to_api(row: dict) -> dict:
    def iso(v):
        return v.isoformat() if hasattr(v, "isoformat") else v

    return {
        "id": str(row["id"]),
        "name": row.get("name") or "",
        "code": row.get("code") or "",
        "storeId": str(row["store_id"]) if row.get("store_id") else None,
        "createdAt": iso(row.get("created_at")),
        "updatedAt": iso(row.get("updated_at")),
    }


def _name_key(row: dict) -> str:
    return re.sub(r"\s+", " ", (row.get("name") or "").strip().lower())


def dedupe_warehouses(rows: List[dict]) -> List[dict]:
    """
    Keep the first warehouse per code (upper-cased), falling back to the
    whitespace-normalized name and then the id. Result is ordered by that
    normalized name.
    """
    seen = {}
    for row in rows:
        code = (row.get("code") or "").strip().upper()
        key = code or _name_key(row) or str(row["id"])
        if key not in seen:
            seen[key] = row
    return sorted(seen.values(), key=_name_key)


@router.get("")
def list_warehouses(store_id: Optional[str] = None, principal: SessionPrincipal = Depends(get_principal)):
    where, params = [], []
    if (store_id or "").strip():
        where.append("store_id = %s")
        params.append(store_id.strip())
    # Sessions bound to a terminal's warehouse only see that warehouse.
    bound = bound_warehouse_id(principal)
    if bound:
        where.append("id = %s")
        params.append(bound)
    where_sql = ("WHERE " + " AND ".join(where)) if where else ""
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, name, code, store_id, created_at, updated_at
                FROM warehouses
                {where_sql}
                ORDER BY name
                """,
                tuple(params),
            )
            rows = cur.fetchall()
    return [_to_api(r) for r in dedupe_warehouses(rows)]


@router.get("/{warehouse_id}")
def get_warehouse(warehouse_id: str, _principal: SessionPrincipal = Depends(get_principal)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, code, store_id, created_at, updated_at
                FROM warehouses
                WHERE id = %s
                """,
                (warehouse_id,),
            )
            row = cur.fetchone()
    if not row:
        raise NotFound("Warehouse not found")
    return _to_api(row)
