"""
Stock Aggregator — Derive stock snapshots from products and purchase orders.

A product's snapshot carries its own on-hand quantity unchanged. Outstanding
purchase orders never add to it; they only supply the expected delivery hint:

  expected_delivery_date = min(expected_delivery_at) over lines whose PO is
                           confirmed / pending_delivery and not yet due.

"Now" is read when the query is built, so every recomputation re-evaluates
which purchase orders still qualify.

Agent: data-engineer
Skill: sqlalchemy
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import exc as sa_exc
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import Product, PurchaseOrder, PurchaseOrderLine
from stock.errors import NotFound, SourceUnavailable
from stock.snapshot import StockSnapshot

logger = structlog.get_logger()

QUALIFYING_PO_STATUSES = ("confirmed", "pending_delivery")

# Connection loss, DBAPI failures and pool exhaustion all mean the store is unusable.
_UNAVAILABLE_ERRORS = (
    asyncio.TimeoutError,
    ConnectionError,
    OSError,
    sa_exc.DBAPIError,
    sa_exc.TimeoutError,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_aware_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _next_delivery_subquery(now: datetime):
    """Subquery: earliest qualifying expected delivery per product."""
    return (
        select(
            PurchaseOrderLine.product_id,
            func.min(PurchaseOrder.expected_delivery_at).label("expected_delivery_at"),
        )
        .join(PurchaseOrder, PurchaseOrder.po_id == PurchaseOrderLine.po_id)
        .where(
            PurchaseOrder.status.in_(QUALIFYING_PO_STATUSES),
            PurchaseOrder.expected_delivery_at.isnot(None),
            PurchaseOrder.expected_delivery_at >= _to_naive_utc(now),
        )
        .group_by(PurchaseOrderLine.product_id)
        .subquery()
    )


def stock_query(now: datetime, sku: str | None = None):
    """Products left-joined to their next delivery, stock desc then SKU asc."""
    deliveries = _next_delivery_subquery(now)
    query = select(
        Product.sku,
        Product.stock_quantity,
        deliveries.c.expected_delivery_at,
    ).outerjoin(deliveries, deliveries.c.product_id == Product.product_id)
    if sku is not None:
        return query.where(Product.sku == sku)
    return query.order_by(Product.stock_quantity.desc(), Product.sku.asc())


def _row_to_snapshot(row) -> StockSnapshot:
    return StockSnapshot(
        sku=row.sku,
        stock_quantity=int(row.stock_quantity),
        expected_delivery_date=_to_aware_utc(row.expected_delivery_at),
    )


class StockAggregator:
    """Resolve stock snapshots against the aggregation source.

    Each resolution opens its own session, so a computation can outlive the
    request that triggered it. No retries happen here.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        query_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.query_timeout_seconds = query_timeout_seconds
        self.clock = clock

    async def resolve_one(self, sku: str, now: datetime | None = None) -> StockSnapshot:
        """Snapshot for one SKU. Raises NotFound when no product has it."""
        now = now or self.clock()
        rows = await self._fetch(stock_query(now, sku=sku), sku=sku)
        if not rows:
            raise NotFound(f"No product with SKU '{sku}'")
        return _row_to_snapshot(rows[0])

    async def resolve_all(self, now: datetime | None = None) -> tuple[StockSnapshot, ...]:
        """One snapshot per product, ordered by stock quantity desc, SKU asc."""
        now = now or self.clock()
        rows = await self._fetch(stock_query(now))
        snapshots = tuple(_row_to_snapshot(row) for row in rows)
        logger.info("stock.aggregated", products=len(snapshots))
        return snapshots

    async def _fetch(self, query, sku: str | None = None) -> list:
        try:
            async with self.session_factory() as session:
                result = await asyncio.wait_for(
                    session.execute(query),
                    timeout=self.query_timeout_seconds,
                )
                return list(result.all())
        except _UNAVAILABLE_ERRORS as e:
            logger.error(
                "stock.source_unavailable",
                sku=sku,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise SourceUnavailable(f"Stock source unavailable: {type(e).__name__}") from e
