import pytest
from pydantic import BaseModel, ValidationError

from inventory_server.app.routers.warehouses import dedupe_warehouses
from inventory_server.app.validation import SizeCode, SizeKind, normalize_size_code


@pytest.mark.parametrize(
    "raw,code",
    [("us 9", "US9"), (" m ", "M"), ("eu\t24", "EU24"), ("", "NA"), ("   ", "NA"), (None, "NA")],
)
def test_normalize_size_code(raw, code):
    assert normalize_size_code(raw) == code


class _Row(BaseModel):
    size_code: SizeCode
    size_kind: SizeKind = "na"


def test_size_annotations():
    row = _Row(size_code=" xl ", size_kind=" Sized ")
    assert row.size_code == "XL"
    assert row.size_kind == "sized"
    with pytest.raises(ValidationError):
        _Row(size_code="M", size_kind="huge")
    with pytest.raises(ValidationError):
        _Row(size_code="   ")


def test_dedupe_warehouses_by_code_then_name_then_id():
    rows = [
        {"id": "1", "name": "Main Store", "code": "MAIN"},
        {"id": "2", "name": "Main store (old)", "code": " main "},
        {"id": "3", "name": "Main  Town", "code": ""},
        {"id": "4", "name": "main town", "code": None},
        {"id": "5", "name": "", "code": ""},
        {"id": "6", "name": "", "code": ""},
    ]
    assert [r["id"] for r in dedupe_warehouses(rows)] == ["5", "6", "1", "3"]


def test_dedupe_warehouses_orders_by_normalized_name():
    rows = [
        {"id": "a", "name": "Main  Town", "code": "MT"},
        {"id": "b", "name": "Main Store", "code": "MS"},
        {"id": "c", "name": " annex", "code": "AX"},
    ]
    assert [r["id"] for r in dedupe_warehouses(rows)] == ["c", "b", "a"]
