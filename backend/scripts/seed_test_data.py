"""
Seed Test Data — Creates demo products, purchase orders and an API client.

Run: python scripts/seed_test_data.py [--products 50] [--client-secret ...]
"""

import argparse
import asyncio
import random
import secrets
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from core.config import get_settings
from core.security import hash_client_secret
from db.models import ApiClient, Product, PurchaseOrder, PurchaseOrderLine, PO_STATUSES
from db.session import Base

settings = get_settings()

DEMO_CLIENT_ID = "demo-client"
FIXED_PRODUCTS = [
    ("098765qwerty", "Sparkling Water 12pk", 15),
    ("123456qwerty", "Oat Milk 1L", 0),
]


async def seed_data(n_products: int = 50, client_secret: str | None = None, seed: int = 42) -> str:
    """Create demo data for development. Returns the demo client secret."""
    rng = random.Random(seed)
    client_secret = client_secret or secrets.token_urlsafe(24)

    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with SessionLocal() as db:
        # ── Products ─────────────────────────────────────────
        products = [Product(sku=sku, name=name, stock_quantity=qty) for sku, name, qty in FIXED_PRODUCTS]
        for i in range(n_products):
            products.append(
                Product(
                    sku=f"SKU-{i:04d}",
                    name=f"Demo Product {i:04d}",
                    stock_quantity=rng.choice([0, 0, rng.randint(1, 500)]),
                )
            )
        db.add_all(products)
        await db.flush()

        # ── Purchase Orders ──────────────────────────────────
        now = datetime.utcnow()
        for _ in range(max(1, n_products // 2)):
            status = rng.choice(PO_STATUSES)
            expected = now + timedelta(days=rng.randint(-10, 30))
            po = PurchaseOrder(
                status=status,
                created_at=now - timedelta(days=rng.randint(1, 20)),
                expected_delivery_at=expected,
                actual_delivery_at=expected if status == "done" else None,
            )
            for product in rng.sample(products, k=min(len(products), rng.randint(1, 3))):
                quantity = rng.randint(6, 96)
                po.lines.append(
                    PurchaseOrderLine(
                        product_id=product.product_id,
                        quantity=quantity,
                        subtotal=Decimal(quantity) * Decimal("2.50"),
                    )
                )
            db.add(po)

        # ── API client ───────────────────────────────────────
        db.add(
            ApiClient(
                client_id=DEMO_CLIENT_ID,
                name="Demo Client",
                secret_hash=hash_client_secret(client_secret),
                scopes="stock:read stock:admin",
            )
        )
        await db.commit()

    await engine.dispose()
    return client_secret


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed StockLevels demo data")
    parser.add_argument("--products", type=int, default=50)
    parser.add_argument("--client-secret", default=None)
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    secret = asyncio.run(seed_data(args.products, args.client_secret, args.seed))
    print(f"Seeded {args.products + len(FIXED_PRODUCTS)} products")
    print(f"client_id={DEMO_CLIENT_ID} client_secret={secret}")


if __name__ == "__main__":
    main()
