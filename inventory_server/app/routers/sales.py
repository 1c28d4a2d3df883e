from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from ..config import DEFAULT_WAREHOUSE_ID
from ..db import get_conn
from ..deps import bound_warehouse_id, get_principal, get_request_id, require_pos_role, resolve_warehouse_id
from ..durability import track_mutation
from ..idempotency import IdempotencyStore, get_idempotency_store
from ..logs import json_log
from ..sales import list_sales, record_sale, void_sale
from ..security import SessionPrincipal

router = APIRouter(prefix="/api/sales", tags=["sales"])

REPLAY_HEADER = "Idempotent-Replayed"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SaleLineIn(_CamelModel):
    product_id: Optional[str] = Field(None, alias="productId")
    size_code: Optional[str] = Field(None, alias="sizeCode")
    quantity: Optional[float] = None
    unit_price: Optional[Decimal] = Field(None, alias="unitPrice")
    line_total: Optional[Decimal] = Field(None, alias="lineTotal")
    name: Optional[str] = None
    sku: Optional[str] = None


class SaleIn(_CamelModel):
    id: Optional[str] = None
    warehouse_id: Optional[str] = Field(None, alias="warehouseId")
    customer_name: Optional[str] = Field(None, alias="customerName")
    payment_method: str = Field("cash", alias="paymentMethod")
    subtotal: Optional[Decimal] = None
    discount_pct: Optional[Decimal] = Field(None, alias="discountPct")
    discount_amt: Optional[Decimal] = Field(None, alias="discountAmt")
    total: Optional[Decimal] = None
    lines: List[SaleLineIn] = Field(default_factory=list, alias="items")
    idempotency_key: Optional[str] = Field(None, alias="idempotencyKey")


class VoidIn(_CamelModel):
    sale_id: Optional[str] = Field(None, alias="saleId")
    voided_by: Optional[str] = Field(None, alias="voidedBy")


@router.post("")
def create_sale(
    data: SaleIn,
    request: Request,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    principal: SessionPrincipal = Depends(require_pos_role),
    store: IdempotencyStore = Depends(get_idempotency_store),
):
    key = (idempotency_key or data.idempotency_key or "").strip() or None
    if key:
        cached = store.lookup(key)
        if cached is not None:
            json_log("info", "sales.idempotent_replay", idempotency_key=key, request_id=get_request_id(request))
            return JSONResponse(cached, headers={REPLAY_HEADER: "true"})

    wid = resolve_warehouse_id(principal, data.warehouse_id) or DEFAULT_WAREHOUSE_ID
    with track_mutation(
        "sale",
        data.id,
        warehouse_id=wid,
        request_id=get_request_id(request),
        user_role=principal.role,
    ) as entry:
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    result = record_sale(
                        cur,
                        warehouse_id=wid,
                        items=[line.model_dump() for line in data.lines],
                        payment_method=data.payment_method,
                        sale_id=data.id,
                        customer_name=data.customer_name,
                        subtotal=data.subtotal,
                        discount_pct=data.discount_pct,
                        discount_amt=data.discount_amt,
                        total=data.total,
                        cashier=principal.email,
                    )
                    entry.entity_id = result["id"]

    # Only a committed sale is remembered; failures stay retryable.
    if key:
        store.store(key, result)
    return result


@router.get("")
def list_sales_route(
    warehouse_id: Optional[str] = None,
    day: Optional[date] = Query(None, alias="date"),
    limit: Optional[int] = None,
    principal: SessionPrincipal = Depends(get_principal),
):
    wid = resolve_warehouse_id(principal, warehouse_id)
    with get_conn() as conn:
        with conn.cursor() as cur:
            return list_sales(cur, wid, day=day, limit=limit)


@router.post("/void")
def void_sale_route(data: VoidIn, request: Request, principal: SessionPrincipal = Depends(get_principal)):
    sale_id = (data.sale_id or "").strip()
    voided_by = (data.voided_by or "").strip() or principal.email
    scope = bound_warehouse_id(principal)
    with track_mutation(
        "sale",
        sale_id or None,
        request_id=get_request_id(request),
        user_role=principal.role,
    ) as entry:
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    result = void_sale(cur, sale_id, voided_by, allowed_warehouse_id=scope)
                    entry.warehouse_id = result["warehouseId"]
    return {"success": True, "saleId": sale_id, "voided": True}
