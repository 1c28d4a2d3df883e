from fastapi import APIRouter, Depends, Query
from datetime import date, datetime, timezone
from typing import Optional

from ..db import get_conn
from ..deps import bound_warehouse_id, get_principal
from ..sales import sales_totals_by_warehouse
from ..security import SessionPrincipal

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/today-by-warehouse")
def today_by_warehouse(
    day: Optional[date] = Query(None, alias="date"),
    principal: SessionPrincipal = Depends(get_principal),
):
    """Sales total per warehouse id for the given day (UTC today by default)."""
    day = day or datetime.now(timezone.utc).date()
    # Terminal sessions only see their own warehouse.
    scope = bound_warehouse_id(principal)
    with get_conn() as conn:
        with conn.cursor() as cur:
            return sales_totals_by_warehouse(cur, day, scope)
