"""
Stock Router — Read-only stock levels per SKU or for the whole catalog.

Agent: full-stack-engineer
Skill: fastapi
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.deps import get_stock_pipeline, require_admin_client, require_read_client
from stock.pipeline import StockPipeline
from stock.snapshot import StockSnapshot

router = APIRouter(prefix="/api/v1/stock", tags=["stock"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class StockResponse(BaseModel):
    sku: str
    stock_quantity: int
    expected_delivery_date: datetime | None = None  # omitted from JSON when absent


class InvalidateRequest(BaseModel):
    sku: str | None = None


class InvalidateResponse(BaseModel):
    invalidated: str


def _to_response(snapshot: StockSnapshot) -> StockResponse:
    return StockResponse(**snapshot.to_dict())


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[StockResponse], response_model_exclude_none=True)
async def list_stock(
    client: dict = Depends(require_read_client),
    pipeline: StockPipeline = Depends(get_stock_pipeline),
):
    """Stock for every product, highest quantity first."""
    snapshots = await pipeline.list_stock(client["sub"])
    return [_to_response(s) for s in snapshots]


@router.get("/{sku}", response_model=StockResponse, response_model_exclude_none=True)
async def get_stock(
    sku: str,
    client: dict = Depends(require_read_client),
    pipeline: StockPipeline = Depends(get_stock_pipeline),
):
    """Stock for a single SKU."""
    return _to_response(await pipeline.get_stock(client["sub"], sku))


@router.post("/cache/invalidate", response_model=InvalidateResponse)
async def invalidate_stock_cache(
    body: InvalidateRequest,
    client: dict = Depends(require_admin_client),
    pipeline: StockPipeline = Depends(get_stock_pipeline),
):
    """Drop cached snapshots after an out-of-band data change."""
    pipeline.invalidate(body.sku)
    return InvalidateResponse(invalidated=body.sku or "*")
