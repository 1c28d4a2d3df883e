from fastapi import APIRouter, Depends, Query
from datetime import datetime
from typing import Optional

from ..db import get_conn
from ..deps import get_principal, resolve_warehouse_id
from ..inventory import list_stock_movements
from ..security import SessionPrincipal

router = APIRouter(prefix="/api/stock-movements", tags=["stock-movements"])


@router.get("")
def list_stock_movements_route(
    warehouse_id: Optional[str] = None,
    product_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
    since: Optional[datetime] = Query(None, alias="from"),
    until: Optional[datetime] = Query(None, alias="to"),
    limit: Optional[int] = None,
    offset: int = 0,
    principal: SessionPrincipal = Depends(get_principal),
):
    wid = resolve_warehouse_id(principal, warehouse_id)
    with get_conn() as conn:
        with conn.cursor() as cur:
            return list_stock_movements(
                cur,
                warehouse_id=wid,
                product_id=product_id,
                transaction_id=transaction_id,
                since=since,
                until=until,
                limit=limit,
                offset=offset,
            )
