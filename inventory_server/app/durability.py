"""
Durability log: one append-only audit row per product/inventory mutation attempt.

Writes are best-effort and run off the request path on a small worker pool, on
their own connection, after the mutation has committed or rolled back. A failed
write is reported to stderr and never reaches the caller.
"""
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException

from .db import get_conn
from .logs import json_log

MAX_MESSAGE_LENGTH = 500

MAX_PENDING_WRITES = 1000

_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="durability")
_pending = threading.BoundedSemaphore(MAX_PENDING_WRITES)


@dataclass
class DurabilityEntry:
    status: str
    entity_type: str
    entity_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    request_id: Optional[str] = None
    user_role: Optional[str] = None
    message: Optional[str] = None


def sanitize_message(raw) -> Optional[str]:
    if raw is None:
        return None
    text = re.sub(r"\s+", " ", str(raw)).strip()
    if not text:
        return None
    if len(text) > MAX_MESSAGE_LENGTH:
        text = text[: MAX_MESSAGE_LENGTH - 3] + "..."
    return text


def log_durability(entry: DurabilityEntry) -> None:
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO durability_logs
                      (id, status, entity_type, entity_id, warehouse_id, request_id, user_role, message)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        entry.status,
                        entry.entity_type,
                        entry.entity_id or "unknown",
                        entry.warehouse_id,
                        entry.request_id,
                        entry.user_role,
                        sanitize_message(entry.message),
                    ),
                )
    except Exception as exc:
        json_log(
            "warning",
            "durability.write_failed",
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            request_id=entry.request_id,
            error=str(exc),
        )


def emit(entry: DurabilityEntry) -> None:
    if not _pending.acquire(blocking=False):
        # Every slot is held by a pending write.
        json_log("warning", "durability.dropped", entity_type=entry.entity_type, reason="queue_full")
        return
    try:
        future = _executor.submit(log_durability, entry)
    except RuntimeError as exc:
        _pending.release()
        # Executor already shut down (process exiting).
        json_log("warning", "durability.dropped", entity_type=entry.entity_type, error=str(exc))
        return
    future.add_done_callback(lambda _f: _pending.release())


def shutdown() -> None:
    _executor.shutdown(wait=True)


def _failure_message(exc: BaseException) -> str:
    if isinstance(exc, HTTPException):
        return str(exc.detail)
    return exc.__class__.__name__


@contextmanager
def track_mutation(
    entity_type: str,
    entity_id: Optional[str] = None,
    *,
    warehouse_id: Optional[str] = None,
    request_id: Optional[str] = None,
    user_role: Optional[str] = None,
):
    """
    Wrap a mutation so exactly one durability entry is emitted for it.
    The yielded entry may be updated inside the block (e.g. the id of a created row).
    """
    entry = DurabilityEntry(
        status="success",
        entity_type=entity_type,
        entity_id=entity_id,
        warehouse_id=warehouse_id,
        request_id=request_id,
        user_role=user_role,
    )
    try:
        yield entry
    except Exception as exc:
        entry.status = "failed"
        entry.message = _failure_message(exc)
        if not entry.entity_id:
            entry.entity_id = "unknown"
        emit(entry)
        raise
    emit(entry)
