"""Derived, read-only stock projection for a single SKU."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class StockSnapshot:
    """Current on-hand quantity plus the nearest qualifying delivery hint."""

    sku: str
    stock_quantity: int
    expected_delivery_date: datetime | None = None  # tz-aware UTC, None when no qualifying PO

    def to_dict(self) -> dict:
        data = {"sku": self.sku, "stock_quantity": self.stock_quantity}
        if self.expected_delivery_date is not None:
            data["expected_delivery_date"] = self.expected_delivery_date
        return data
