"""Product catalog snapshot loaded from a JSON export of the shop inventory."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .models import ProductSummary

logger = logging.getLogger("mixer.catalog")

NAME_KEYS = ["name", "ten", "ten san pham", "product name"]
PRICE_KEYS = ["price", "gia", "gia ban"]
STOCK_KEYS = ["stock", "ton kho", "so luong", "quantity"]


class ProductCatalog:
    """Read-only product list, reloaded when the backing file changes."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._products: List[ProductSummary] = []
        self._mtime: Optional[float] = None

    def list_products(self) -> List[ProductSummary]:
        """Purpose: Return the current catalog snapshot.
        Inputs/Outputs: No inputs; returns a new list of ProductSummary.
        Side Effects / State: Reloads from disk when the file mtime changed.
        Failure Modes: Missing or malformed file yields an empty catalog.
        Testing Notes: Rewrite the file and confirm the next call sees the change.
        """
        if not self._path.exists():
            return []
        mtime = self._path.stat().st_mtime
        if self._mtime != mtime:
            self._products = self._load()
            self._mtime = mtime
        return list(self._products)

    def count(self) -> int:
        return len(self.list_products())

    def _load(self) -> List[ProductSummary]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("path=%s catalog unreadable", self._path)
            return []
        rows = data.get("products", []) if isinstance(data, dict) else data
        products: List[ProductSummary] = []
        for row in rows if isinstance(rows, list) else []:
            product = parse_product(row)
            if product:
                products.append(product)
        logger.info("path=%s products=%s", self._path, len(products))
        return products


def parse_product(row: Any) -> Optional[ProductSummary]:
    """Map a loosely keyed inventory row onto ProductSummary; None if unusable."""
    if not isinstance(row, dict):
        return None
    lowered: Dict[str, Any] = {str(key).strip().lower(): value for key, value in row.items()}
    name = _first(lowered, NAME_KEYS)
    if not name:
        return None
    try:
        return ProductSummary(
            id=str(lowered["id"]) if lowered.get("id") is not None else None,
            name=str(name),
            price=int(float(_first(lowered, PRICE_KEYS) or 0)),
            stock=max(0, int(float(_first(lowered, STOCK_KEYS) or 0))),
            sizes=_as_list(lowered.get("sizes")),
            colors=_as_list(lowered.get("colors")),
        )
    except (TypeError, ValueError, ValidationError):
        return None


def _first(row: Dict[str, Any], keys: List[str]) -> Any:
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(part) for part in value if str(part).strip()]
    return []
