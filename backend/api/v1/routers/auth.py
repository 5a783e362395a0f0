"""
Auth Router — Exchange client credentials for a bearer token.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from api.deps import get_db
from core.config import get_settings
from core.security import create_access_token, verify_client_secret
from db.models import ApiClient

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
logger = structlog.get_logger()


# ─── Schemas ────────────────────────────────────────────────────────────────


class TokenRequest(BaseModel):
    client_id: str = Field(..., min_length=1, max_length=100)
    client_secret: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/token", response_model=TokenResponse)
async def issue_token(
    body: TokenRequest,
    db: AsyncSession = Depends(get_db),
):
    """Client-credentials grant."""
    result = await db.execute(select(ApiClient).where(ApiClient.client_id == body.client_id))
    client = result.scalar_one_or_none()
    if client is None or not client.is_active or not verify_client_secret(body.client_secret, client.secret_hash):
        logger.info("auth.token_rejected", client_id=body.client_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid client credentials",
        )

    expires_in = get_settings().access_token_expire_minutes * 60
    token = create_access_token({"sub": client.client_id, "scope": client.scopes})
    logger.info("auth.token_issued", client_id=client.client_id, expires_in=expires_in)
    return TokenResponse(access_token=token, expires_in=expires_in)
