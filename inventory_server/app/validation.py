from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BeforeValidator, Field, StringConstraints


def _strip_str(v):
    if v is None:
        return v
    return str(v).strip()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def normalize_size_code(raw) -> str:
    """Storage form of a size code: no whitespace, upper-case. Empty means NA."""
    return re.sub(r"\s+", "", str(raw if raw is not None else "")).upper() or "NA"


def _to_size_code(v):
    if v is None:
        return v
    s = str(v).strip()
    return normalize_size_code(s) if s else None


# Mirrors the CHECK constraint on warehouse_products.size_kind.
SizeKind = Annotated[Literal["na", "one_size", "sized"], BeforeValidator(_to_lower_str)]

RequiredStr = Annotated[str, BeforeValidator(_strip_str), StringConstraints(min_length=1)]

SizeCode = Annotated[str, BeforeValidator(_to_size_code), StringConstraints(min_length=1, max_length=32)]

PositiveQty = Annotated[int, Field(gt=0)]
