import copy
import json
import os
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone


# Allow running pytest from either the repo root or from within `inventory_server/`.
# Tests import `inventory_server.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

# Settings are read once at import time.
os.environ["APP_ENV"] = "local"
os.environ["SESSION_SECRET"] = "test-session-secret-0123456789"
os.environ["ADMIN_EMAILS"] = "owner@example.com, Boss@Example.com"
os.environ["POS_PASSWORD_CASHIER_MAIN_STORE"] = "correct-horse-battery"
os.environ.pop("POS_PASSWORD_MAIN_TOWN", None)
os.environ.pop("JWT_SECRET", None)

import pytest

MAIN_WAREHOUSE = "00000000-0000-0000-0000-000000000001"
OTHER_WAREHOUSE = "00000000-0000-0000-0000-000000000002"


def _norm(sql: str) -> str:
    return " ".join(sql.split())


class FakeDatabase:
    """
    Just enough of the schema to run the data-access SQL against dicts.
    Statements are recognised by their normalized text; anything unknown fails the test.
    """

    def __init__(self):
        self.products = {}
        self.inventory = {}
        self.by_size = {}
        self.size_labels = {"NA": "N/A", "OS": "One Size", "M": "M", "L": "L"}
        self.transactions = {}
        self.transaction_items = []
        self.movements = []
        self.warehouses = [
            {"id": MAIN_WAREHOUSE, "name": "Main Store", "code": "MAIN", "store_id": None,
             "created_at": None, "updated_at": None},
        ]
        self.executed = []
        self.fail_on = None

    # State handling

    _STATE = ("products", "inventory", "by_size", "transactions", "transaction_items", "movements")

    def snapshot(self):
        return {k: copy.deepcopy(getattr(self, k)) for k in self._STATE}

    def restore(self, snap):
        for k, v in snap.items():
            setattr(self, k, v)

    @contextmanager
    def transaction(self):
        snap = self.snapshot()
        try:
            yield
        except BaseException:
            self.restore(snap)
            raise

    def add_product(self, name="Tee", warehouse_id=MAIN_WAREHOUSE, quantity=0, size_kind="na", **extra):
        pid = extra.pop("id", None) or str(uuid.uuid4())
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        row = {
            "id": pid,
            "warehouse_id": warehouse_id,
            "sku": extra.pop("sku", ""),
            "barcode": "",
            "name": name,
            "description": "",
            "category": extra.pop("category", ""),
            "size_kind": size_kind,
            "selling_price": extra.pop("selling_price", 10),
            "cost_price": 5,
            "reorder_level": extra.pop("reorder_level", 0),
            "location": {},
            "supplier": {},
            "tags": [],
            "images": [],
            "version": extra.pop("version", 0),
            "created_at": now,
            "updated_at": now,
        }
        row.update(extra)
        self.products[pid] = row
        if warehouse_id:
            self.inventory[(warehouse_id, pid)] = quantity
        return pid

    # Cursor protocol

    def run(self, sql, params):
        q = _norm(sql)
        params = tuple(params or ())
        self.executed.append((q, params))
        if self.fail_on and self.fail_on in q:
            raise RuntimeError(f"simulated failure on: {self.fail_on}")

        if q.startswith("SELECT 1"):
            return [{"ok": 1}]

        # Per-size inventory
        if q.startswith("DELETE FROM warehouse_inventory_by_size"):
            wid, pid = params
            for k in [k for k in self.by_size if k[0] == wid and k[1] == pid]:
                del self.by_size[k]
            return []
        if q.startswith("INSERT INTO warehouse_inventory_by_size"):
            wid, pid, code, qty = params
            key = (wid, pid, code)
            if "ON CONFLICT" in q:
                self.by_size[key] = self.by_size.get(key, 0) + qty
            else:
                assert key not in self.by_size, "duplicate size row"
                self.by_size[key] = qty
            return [{"quantity": self.by_size[key]}]
        if q.startswith("UPDATE warehouse_inventory_by_size"):
            qty, wid, pid, code, _min = params
            key = (wid, pid, code)
            if self.by_size.get(key, 0) >= qty and key in self.by_size:
                self.by_size[key] -= qty
                return [{"quantity": self.by_size[key]}]
            return []
        if q.startswith("SELECT b.size_code, b.quantity, sc.size_label FROM warehouse_inventory_by_size"):
            wid, pid = params
            return [
                {"size_code": k[2], "quantity": v, "size_label": self.size_labels.get(k[2])}
                for k, v in sorted(self.by_size.items())
                if k[0] == wid and k[1] == pid
            ]
        if q.startswith("SELECT p.size_kind, EXISTS"):
            wid, pid = params
            row = self.products.get(pid)
            if not row:
                return []
            has_sizes = any(k[0] == wid and k[1] == pid for k in self.by_size)
            return [{"size_kind": row.get("size_kind"), "has_sizes": has_sizes}]
        if q.startswith("INSERT INTO warehouse_inventory (warehouse_id, product_id, quantity, updated_at) SELECT"):
            wid, pid = params[:2]
            total = sum(max(v, 0) for k, v in self.by_size.items() if k[0] == wid and k[1] == pid)
            self.inventory[(wid, pid)] = total
            return [{"quantity": total}]
        if q.startswith("SELECT b.product_id, b.size_code"):
            wid, ids = params
            return [
                {"product_id": k[1], "size_code": k[2], "quantity": v, "size_label": self.size_labels.get(k[2])}
                for k, v in sorted(self.by_size.items())
                if k[0] == wid and k[1] in ids
            ]

        # Aggregate inventory
        if q.startswith("SELECT quantity FROM warehouse_inventory"):
            wid, pid = params
            if (wid, pid) in self.inventory:
                return [{"quantity": self.inventory[(wid, pid)]}]
            return []
        if q.startswith("INSERT INTO warehouse_inventory"):
            wid, pid, qty = params
            if "warehouse_inventory.quantity + EXCLUDED.quantity" in q:
                self.inventory[(wid, pid)] = self.inventory.get((wid, pid), 0) + qty
            else:
                self.inventory[(wid, pid)] = qty
            return [{"quantity": self.inventory[(wid, pid)]}]
        if q.startswith("UPDATE warehouse_inventory SET quantity = quantity - %s"):
            qty, wid, pid, _min = params
            if (wid, pid) in self.inventory and self.inventory[(wid, pid)] >= qty:
                self.inventory[(wid, pid)] -= qty
                return [{"quantity": self.inventory[(wid, pid)]}]
            return []

        if q.startswith("INSERT INTO stock_movements"):
            tx, wid, pid, code, delta, ref = params
            self.movements.append(
                {"transaction_id": tx, "warehouse_id": wid, "product_id": pid,
                 "size_code": code, "quantity_delta": delta, "reference_type": ref}
            )
            return []
        if q.startswith("SELECT id, transaction_id, warehouse_id, product_id") and "FROM stock_movements" in q:
            return self._list_movements(q, params)

        # Products
        if q.startswith("SELECT p.id") and "LEFT JOIN warehouse_inventory wi" in q:
            return self._list_products(q, params)
        if q.startswith("SELECT p.id") and "WHERE p.id = %s" in q:
            row = self.products.get(params[0])
            return [dict(row)] if row else []
        if q.startswith("INSERT INTO warehouse_products"):
            cols = q.split("(id, ", 1)[1].split(", version", 1)[0].split(", ")
            pid = str(uuid.uuid4())
            row = {"id": pid, "version": 0, "size_kind": "na", "reorder_level": 0, "tags": [], "images": [],
                   "created_at": datetime.now(timezone.utc), "updated_at": datetime.now(timezone.utc)}
            casts = q.split("VALUES (gen_random_uuid(), ", 1)[1].split(", 0, now()", 1)[0].split(", ")
            for col, cast, val in zip(cols, casts, params):
                row[col] = json.loads(val) if cast.endswith("::jsonb") else val
            self.products[pid] = row
            return [{"id": pid}]
        if q.startswith("UPDATE warehouse_products SET"):
            set_clause = q.split(" SET ", 1)[1].split(" WHERE ", 1)[0]
            assigns = [a for a in set_clause.split(", ") if "%s" in a]
            values = params[: len(assigns)]
            pid, expected = params[len(assigns)], params[len(assigns) + 1]
            row = self.products.get(pid)
            if not row or row["version"] != expected:
                return []
            for a, v in zip(assigns, values):
                col = a.split(" = ", 1)[0]
                row[col] = json.loads(v) if "::jsonb" in a else v
            row["version"] += 1
            return [{"id": pid, "warehouse_id": row.get("warehouse_id"), "version": row["version"]}]
        if q.startswith("SELECT version FROM warehouse_products"):
            row = self.products.get(params[0])
            return [{"version": row["version"]}] if row else []
        if q.startswith("DELETE FROM warehouse_products WHERE id = ANY"):
            ids = params[0]
            gone = [i for i in ids if self.products.pop(i, None) is not None]
            self._cascade(gone)
            return [{"id": i} for i in gone]
        if q.startswith("DELETE FROM warehouse_products WHERE id = %s"):
            row = self.products.pop(params[0], None)
            self._cascade([params[0]] if row else [])
            return [{"id": params[0]}] if row else []

        # Sales
        if q.startswith("SELECT id, receipt_id, created_at FROM transactions"):
            row = self.transactions.get(params[0])
            return [dict(row)] if row else []
        if q.startswith("INSERT INTO transactions"):
            sid, wid, receipt, customer, payment, subtotal, pct, amt, total, cashier = params
            row = {
                "id": sid, "warehouse_id": wid, "receipt_id": receipt,
                "customer_name": (customer or "").strip() or None, "payment_method": payment,
                "subtotal": subtotal, "discount_pct": pct, "discount_amt": amt, "total": total,
                "cashier": cashier, "status": "completed", "voided_at": None, "voided_by": None,
                "created_at": datetime.now(timezone.utc),
            }
            assert sid not in self.transactions, "duplicate transaction id"
            self.transactions[sid] = row
            return [dict(row)]
        if q.startswith("INSERT INTO transaction_items"):
            sid, pid, code, qty, unit, line_total, name, sku = params
            self.transaction_items.append(
                {"transaction_id": sid, "product_id": pid, "size_code": code, "quantity": qty,
                 "unit_price": unit, "line_total": line_total, "name": name, "sku": sku}
            )
            return []
        if q.startswith("SELECT id, warehouse_id, voided_at FROM transactions"):
            row = self.transactions.get(params[0])
            return [dict(row)] if row else []
        if q.startswith("SELECT product_id, size_code, quantity FROM transaction_items"):
            return [dict(i) for i in self.transaction_items if i["transaction_id"] == params[0]]
        if q.startswith("UPDATE transactions SET voided_at"):
            voided_by, sid = params
            row = self.transactions[sid]
            row.update(voided_at=datetime.now(timezone.utc), voided_by=voided_by, status="voided")
            return []
        if q.startswith("SELECT warehouse_id, COALESCE(SUM(total), 0) AS total FROM transactions"):
            day = params[0]
            totals = {}
            for r in self.transactions.values():
                if r["voided_at"] is not None or r["created_at"].date() != day:
                    continue
                if len(params) > 1 and r["warehouse_id"] != params[1]:
                    continue
                totals[r["warehouse_id"]] = totals.get(r["warehouse_id"], 0) + float(r["total"] or 0)
            return [{"warehouse_id": w, "total": t} for w, t in totals.items()]
        if q.startswith("SELECT id, warehouse_id, receipt_id"):
            wid = params[0]
            rows = [dict(r) for r in self.transactions.values() if r["warehouse_id"] == wid]
            return rows[: params[-1]]

        # Reference data
        if "FROM warehouses" in q:
            if "WHERE id = %s" in q and q.count("%s") == 1:
                return [dict(w) for w in self.warehouses if w["id"] == params[0]]
            rows = [dict(w) for w in self.warehouses]
            if "id = %s" in q:
                rows = [w for w in rows if w["id"] == params[-1]]
            return sorted(rows, key=lambda w: w["name"])
        if q.startswith("SELECT size_code, size_label, size_order FROM size_codes"):
            return [{"size_code": k, "size_label": v, "size_order": i} for i, (k, v) in enumerate(self.size_labels.items())]

        raise AssertionError(f"unexpected SQL: {q}")

    def _cascade(self, ids):
        for k in [k for k in self.inventory if k[1] in ids]:
            del self.inventory[k]
        for k in [k for k in self.by_size if k[1] in ids]:
            del self.by_size[k]

    def _list_products(self, q, params):
        rows = list(self.products.values())
        if "p.warehouse_id = %s" in q:
            rows = [r for r in rows if r["warehouse_id"] == params[0]]
        rows.sort(key=lambda r: r["name"])
        total = len(rows)
        limit, offset = params[-2], params[-1]
        out = []
        for r in rows[offset : offset + limit]:
            d = dict(r)
            d["inventory_quantity"] = self.inventory.get((r["warehouse_id"], r["id"]), 0)
            d["total_count"] = total
            out.append(d)
        return out

    def _list_movements(self, q, params):
        where = q.split(" WHERE ", 1)[1].split(" ORDER BY ", 1)[0] if " WHERE " in q else ""
        values = list(params[:-2])
        # Ledger rows carry their insertion order as a stand-in for created_at.
        rows = [dict(m, id=f"m-{i}", created_at=datetime(2026, 1, 1, tzinfo=timezone.utc), seq=i)
                for i, m in enumerate(self.movements)]
        for clause in [c for c in where.split(" AND ") if c]:
            value = values.pop(0)
            col = clause.split(" ", 1)[0]
            if clause.endswith("= %s") and ">=" not in clause and "<=" not in clause:
                rows = [r for r in rows if r[col] == value]
        rows.sort(key=lambda r: r["seq"], reverse=True)
        total = len(rows)
        limit, offset = params[-2], params[-1]
        return [dict(r, total_count=total) for r in rows[offset : offset + limit]]

    def statements(self, prefix):
        return [s for s, _ in self.executed if s.startswith(prefix)]


class FakeCursor:
    def __init__(self, db: FakeDatabase):
        self._db = db
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self._rows = list(self._db.run(sql, params))

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows


class FakeConn:
    def __init__(self, db: FakeDatabase):
        self._db = db
        self._snap = None

    def __enter__(self):
        self._snap = self._db.snapshot()
        return self

    def __exit__(self, exc_type, exc, tb):
        # Pool connections roll back on error.
        if exc_type is not None:
            self._db.restore(self._snap)
        return False

    def transaction(self):
        return self._db.transaction()

    def cursor(self):
        return FakeCursor(self._db)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def cur(fake_db):
    return FakeCursor(fake_db)


@pytest.fixture
def durability_entries(monkeypatch):
    from inventory_server.app import durability

    entries = []
    monkeypatch.setattr(durability, "emit", entries.append)
    return entries


@pytest.fixture
def app_db(monkeypatch, fake_db, durability_entries):
    """Route every router's get_conn to the fake database."""
    from inventory_server.app import main
    from inventory_server.app.routers import (
        dashboard, inventory, products, sales, size_codes, stock_movements, warehouses,
    )

    for mod in (main, dashboard, inventory, products, sales, size_codes, stock_movements, warehouses):
        monkeypatch.setattr(mod, "get_conn", lambda: FakeConn(fake_db))
    return fake_db


@pytest.fixture
def idempotency_store():
    from inventory_server.app.idempotency import InMemoryIdempotencyStore, get_idempotency_store
    from inventory_server.app.main import app

    store = InMemoryIdempotencyStore(ttl_seconds=300, max_entries=500)
    app.dependency_overrides[get_idempotency_store] = lambda: store
    yield store
    app.dependency_overrides.pop(get_idempotency_store, None)


@pytest.fixture
def client(app_db, idempotency_store):
    from fastapi.testclient import TestClient
    from inventory_server.app.main import app

    return TestClient(app)


def _auth_headers(email, **binding):
    from inventory_server.app.config import settings
    from inventory_server.app.roles import derive_role
    from inventory_server.app.security import issue_session_token

    token = issue_session_token(email, derive_role(email), settings.signing_secret(), hours=1, binding=binding)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return _auth_headers
