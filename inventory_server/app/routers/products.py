from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..config import DEFAULT_WAREHOUSE_ID
from ..db import get_conn
from ..deps import get_principal, get_request_id, require_admin, resolve_warehouse_id
from ..durability import track_mutation
from ..inventory import get_quantities_by_size, save_sizes
from ..products import (
    create_product,
    delete_product,
    delete_products_bulk,
    get_product,
    list_products,
    update_product,
)
from ..security import SessionPrincipal
from ..validation import SizeKind

router = APIRouter(prefix="/api/products", tags=["products"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SizeRowIn(_CamelModel):
    size_code: Optional[str] = Field(None, alias="sizeCode")
    quantity: Optional[float] = None


class ProductFields(_CamelModel):
    sku: Optional[str] = None
    barcode: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    size_kind: Optional[SizeKind] = Field(None, alias="sizeKind")
    selling_price: Optional[Decimal] = Field(None, alias="sellingPrice")
    cost_price: Optional[Decimal] = Field(None, alias="costPrice")
    reorder_level: Optional[int] = Field(None, alias="reorderLevel")
    location: Optional[Dict[str, Any]] = None
    supplier: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    images: Optional[List[str]] = None
    warehouse_id: Optional[str] = Field(None, alias="warehouseId")
    quantity: Optional[float] = None
    quantity_by_size: Optional[List[SizeRowIn]] = Field(None, alias="quantityBySize")


class ProductCreateIn(ProductFields):
    name: str


class ProductUpdateIn(ProductFields):
    version: int


class BulkDeleteIn(BaseModel):
    ids: List[str]


class SizesIn(_CamelModel):
    warehouse_id: Optional[str] = Field(None, alias="warehouseId")
    sizes: List[SizeRowIn]


_NON_COLUMN_FIELDS = {"warehouse_id", "quantity", "quantity_by_size", "version"}


def _column_fields(data: ProductFields) -> dict:
    return data.model_dump(exclude_unset=True, exclude=_NON_COLUMN_FIELDS)


def _size_rows(rows: Optional[List[SizeRowIn]]):
    if rows is None:
        return None
    return [r.model_dump() for r in rows]


@router.get("")
def list_products_route(
    warehouse_id: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    q: Optional[str] = None,
    category: Optional[str] = None,
    low_stock: bool = False,
    out_of_stock: bool = False,
    principal: SessionPrincipal = Depends(get_principal),
):
    wid = resolve_warehouse_id(principal, warehouse_id)
    with get_conn() as conn:
        with conn.cursor() as cur:
            return list_products(
                cur,
                wid,
                limit=limit,
                offset=offset,
                q=q,
                category=category,
                low_stock=low_stock,
                out_of_stock=out_of_stock,
            )


@router.post("", status_code=201)
def create_product_route(data: ProductCreateIn, request: Request, principal: SessionPrincipal = Depends(require_admin)):
    wid = resolve_warehouse_id(principal, data.warehouse_id) or DEFAULT_WAREHOUSE_ID
    with track_mutation(
        "product",
        warehouse_id=wid,
        request_id=get_request_id(request),
        user_role=principal.role,
    ) as entry:
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    product_id = create_product(
                        cur,
                        _column_fields(data),
                        warehouse_id=wid,
                        quantity=data.quantity,
                        quantity_by_size=_size_rows(data.quantity_by_size),
                        created_by=principal.email,
                    )
                    entry.entity_id = product_id
            with conn.cursor() as cur:
                return get_product(cur, product_id, wid)


# Registered before /{product_id} so "bulk" is not taken for an id.
@router.delete("/bulk")
def bulk_delete_products(data: BulkDeleteIn, request: Request, principal: SessionPrincipal = Depends(require_admin)):
    with track_mutation(
        "product",
        ",".join(data.ids[:20]) or None,
        request_id=get_request_id(request),
        user_role=principal.role,
    ):
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    deleted = delete_products_bulk(cur, data.ids)
    return {"deleted": deleted}


@router.get("/{product_id}")
def get_product_route(
    product_id: str,
    warehouse_id: Optional[str] = None,
    principal: SessionPrincipal = Depends(get_principal),
):
    wid = resolve_warehouse_id(principal, warehouse_id)
    with get_conn() as conn:
        with conn.cursor() as cur:
            return get_product(cur, product_id, wid)


@router.put("/{product_id}")
@router.patch("/{product_id}")
def update_product_route(
    product_id: str,
    data: ProductUpdateIn,
    request: Request,
    principal: SessionPrincipal = Depends(require_admin),
):
    wid = resolve_warehouse_id(principal, data.warehouse_id)
    with track_mutation(
        "product",
        product_id,
        warehouse_id=wid,
        request_id=get_request_id(request),
        user_role=principal.role,
    ) as entry:
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    saved = update_product(
                        cur,
                        product_id,
                        data.version,
                        _column_fields(data),
                        warehouse_id=wid,
                        quantity=data.quantity,
                        quantity_by_size=_size_rows(data.quantity_by_size),
                    )
                    entry.warehouse_id = saved["warehouseId"]
            with conn.cursor() as cur:
                return get_product(cur, product_id, saved["warehouseId"])


@router.delete("/{product_id}", status_code=204)
def delete_product_route(product_id: str, request: Request, principal: SessionPrincipal = Depends(require_admin)):
    with track_mutation(
        "product",
        product_id,
        request_id=get_request_id(request),
        user_role=principal.role,
    ):
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    delete_product(cur, product_id)
    return Response(status_code=204)


@router.put("/{product_id}/sizes")
def save_product_sizes(
    product_id: str,
    data: SizesIn,
    request: Request,
    principal: SessionPrincipal = Depends(require_admin),
):
    wid = resolve_warehouse_id(principal, data.warehouse_id) or DEFAULT_WAREHOUSE_ID
    with track_mutation(
        "inventory",
        product_id,
        warehouse_id=wid,
        request_id=get_request_id(request),
        user_role=principal.role,
    ):
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    total = save_sizes(cur, product_id, wid, _size_rows(data.sizes))
            with conn.cursor() as cur:
                sizes = get_quantities_by_size(cur, wid, product_id)
    return {"productId": product_id, "warehouseId": wid, "quantity": total, "quantityBySize": sizes}


@router.get("/{product_id}/inventory-by-size")
def product_inventory_by_size(
    product_id: str,
    warehouse_id: Optional[str] = None,
    principal: SessionPrincipal = Depends(get_principal),
):
    wid = resolve_warehouse_id(principal, warehouse_id) or DEFAULT_WAREHOUSE_ID
    with get_conn() as conn:
        with conn.cursor() as cur:
            sizes = get_quantities_by_size(cur, wid, product_id)
    return {"productId": product_id, "warehouseId": wid, "quantityBySize": sizes}
