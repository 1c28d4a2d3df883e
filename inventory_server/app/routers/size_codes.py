from fastapi import APIRouter

from ..db import get_conn

router = APIRouter(prefix="/api/size-codes", tags=["size-codes"])


@router.get("")
def list_size_codes():
    # Reference data; readable without a session (POS boot screen).
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT size_code, size_label, size_order
                FROM size_codes
                ORDER BY size_order, size_code
                """
            )
            return {"data": cur.fetchall()}
