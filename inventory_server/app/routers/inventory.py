from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from ..config import DEFAULT_WAREHOUSE_ID
from ..db import get_conn
from ..deps import get_request_id, require_admin, require_stock_role, resolve_warehouse_id
from ..durability import track_mutation
from ..inventory import process_return_stock, process_sale_deductions, set_quantity
from ..security import SessionPrincipal

router = APIRouter(tags=["inventory"])


class StockLineIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Optional[str] = Field(None, alias="productId")
    # Checked by parse_stock_lines so the whole batch fails with one message.
    quantity: Optional[float] = None
    size_code: Optional[str] = Field(None, alias="sizeCode")


class StockBatchIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    warehouse_id: Optional[str] = Field(None, alias="warehouseId")
    items: List[StockLineIn] = []


class SetQuantityIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    warehouse_id: Optional[str] = Field(None, alias="warehouseId")
    product_id: str = Field(..., alias="productId")
    quantity: float


def _items(data: StockBatchIn) -> list:
    return [i.model_dump() for i in data.items]


def _deduct(data: StockBatchIn, request: Request, principal: SessionPrincipal, reference_type: str):
    wid = resolve_warehouse_id(principal, data.warehouse_id) or DEFAULT_WAREHOUSE_ID
    with track_mutation(
        "inventory",
        ",".join(i.product_id or "" for i in data.items[:20]) or None,
        warehouse_id=wid,
        request_id=get_request_id(request),
        user_role=principal.role,
    ):
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    lines = process_sale_deductions(cur, wid, _items(data), reference_type=reference_type)
    return {"ok": True, "warehouseId": wid, "deducted": len(lines)}


@router.post("/api/inventory/deduct")
def inventory_deduct(data: StockBatchIn, request: Request, principal: SessionPrincipal = Depends(require_stock_role)):
    return _deduct(data, request, principal, "deduct")


@router.post("/api/orders/deduct")
def orders_deduct(data: StockBatchIn, request: Request, principal: SessionPrincipal = Depends(require_stock_role)):
    return _deduct(data, request, principal, "order")


@router.post("/api/orders/return-stock")
def orders_return_stock(
    data: StockBatchIn,
    request: Request,
    principal: SessionPrincipal = Depends(require_stock_role),
):
    wid = resolve_warehouse_id(principal, data.warehouse_id) or DEFAULT_WAREHOUSE_ID
    with track_mutation(
        "inventory",
        ",".join(i.product_id or "" for i in data.items[:20]) or None,
        warehouse_id=wid,
        request_id=get_request_id(request),
        user_role=principal.role,
    ):
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    lines = process_return_stock(cur, wid, _items(data))
    return {"ok": True, "warehouseId": wid, "returned": len(lines)}


@router.put("/api/inventory/quantity")
def inventory_set_quantity(
    data: SetQuantityIn,
    request: Request,
    principal: SessionPrincipal = Depends(require_admin),
):
    wid = resolve_warehouse_id(principal, data.warehouse_id) or DEFAULT_WAREHOUSE_ID
    with track_mutation(
        "inventory",
        data.product_id,
        warehouse_id=wid,
        request_id=get_request_id(request),
        user_role=principal.role,
    ):
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    qty = set_quantity(cur, wid, data.product_id, data.quantity)
    return {"warehouseId": wid, "productId": data.product_id, "quantity": qty}
