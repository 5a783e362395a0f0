"""
StockLevels API Dependencies

Dependency injection for DB sessions, client auth, and the stock pipeline.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.session import AsyncSessionLocal
from stock.pipeline import StockPipeline

settings = get_settings()
security = HTTPBearer(auto_error=False)

DEV_CLIENT_ID = "dev-client"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_client(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode the bearer token and return its payload. Bypassed in debug mode."""
    if settings.debug:
        return {"sub": DEV_CLIENT_ID, "scope": "stock:read stock:admin"}

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


def _require_scope(client: dict, scope: str) -> dict:
    from core.security import token_scopes

    if scope not in token_scopes(client):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing {scope} scope",
        )
    return client


async def require_read_client(client: dict = Depends(get_current_client)) -> dict:
    return _require_scope(client, "stock:read")


async def require_admin_client(client: dict = Depends(get_current_client)) -> dict:
    return _require_scope(client, "stock:admin")


def get_stock_pipeline(request: Request) -> StockPipeline:
    """The process-wide pipeline built at startup."""
    pipeline = getattr(request.app.state, "stock_pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stock pipeline not initialised",
        )
    return pipeline
