"""
Stock Request Pipeline — governor → validation → cache → aggregator.

Callers must already hold a verified client identity. A request rejected by
the governor never reaches the cache or the store; neither does a malformed
SKU. NotFound and SourceUnavailable from a cache miss propagate unchanged.
"""

import re

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings
from stock.aggregator import StockAggregator
from stock.cache import ALL_PRODUCTS_KEY, SnapshotCache
from stock.errors import InvalidInput, RateLimited
from stock.governor import RateDecision, RateGovernor, RedisRateGovernor
from stock.snapshot import StockSnapshot

logger = structlog.get_logger()

CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def validate_sku(sku: str, max_length: int = 100) -> str:
    if not isinstance(sku, str) or not sku:
        raise InvalidInput("SKU must be a non-empty string")
    if len(sku) > max_length:
        raise InvalidInput(f"SKU longer than {max_length} characters")
    if sku == ALL_PRODUCTS_KEY:
        raise InvalidInput(f"'{ALL_PRODUCTS_KEY}' is not a SKU")
    if CONTROL_CHARS.search(sku):
        raise InvalidInput("SKU contains control characters")
    return sku


class StockPipeline:
    def __init__(
        self,
        governor: RateGovernor | RedisRateGovernor,
        cache: SnapshotCache,
        aggregator: StockAggregator,
        cache_ttl_seconds: float = 300.0,
        sku_max_length: int = 100,
    ):
        self.governor = governor
        self.cache = cache
        self.aggregator = aggregator
        self.cache_ttl_seconds = cache_ttl_seconds
        self.sku_max_length = sku_max_length

    async def _admit(self, client_id: str) -> RateDecision:
        decision = await self.governor.admit(client_id)
        if not decision.admitted:
            logger.info(
                "stock.rate_limited",
                client_id=client_id,
                retry_after=round(decision.retry_after, 3),
            )
            raise RateLimited(decision.retry_after)
        return decision

    async def get_stock(self, client_id: str, sku: str) -> StockSnapshot:
        """Snapshot for one SKU, served from cache when fresh."""
        await self._admit(client_id)
        sku = validate_sku(sku, self.sku_max_length)
        return await self.cache.get_or_compute(
            sku,
            self.cache_ttl_seconds,
            lambda: self.aggregator.resolve_one(sku),
        )

    async def list_stock(self, client_id: str) -> tuple[StockSnapshot, ...]:
        """Snapshots for every product, served from cache when fresh."""
        await self._admit(client_id)
        return await self.cache.get_or_compute(
            ALL_PRODUCTS_KEY,
            self.cache_ttl_seconds,
            self.aggregator.resolve_all,
        )

    def invalidate(self, sku: str | None = None) -> None:
        """Drop cached snapshots after an underlying data change.

        A SKU change also stales the full list, so both entries go.
        """
        if sku is None:
            self.cache.clear()
            return
        self.cache.invalidate(validate_sku(sku, self.sku_max_length))
        self.cache.invalidate(ALL_PRODUCTS_KEY)


def build_pipeline(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client=None,
) -> StockPipeline:
    """Wire the pipeline from configuration."""
    if settings.rate_limit_backend == "redis":
        if redis_client is None:
            raise ValueError("rate_limit_backend=redis requires a redis client")
        governor = RedisRateGovernor(
            redis_client,
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    else:
        governor = RateGovernor(
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
            idle_windows=settings.rate_limit_idle_windows,
            max_clients=settings.rate_limit_max_clients,
        )

    return StockPipeline(
        governor=governor,
        cache=SnapshotCache(max_entries=settings.stock_cache_max_entries),
        aggregator=StockAggregator(
            session_factory,
            query_timeout_seconds=settings.stock_query_timeout_seconds,
        ),
        cache_ttl_seconds=settings.stock_cache_ttl_seconds,
        sku_max_length=settings.sku_max_length,
    )
