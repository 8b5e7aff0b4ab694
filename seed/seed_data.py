"""
Seed the database with sample pending orders.

Creates a handful of cinema booking orders in VND, pending payment, so the
create/return flow can be exercised against the VNPay sandbox.

Run:
    python -m seed.seed_data
"""

import asyncio

from payment_gateway.database import async_session, init_db
from payment_gateway.engine.orders import ensure_pending_order
from payment_gateway.errors import ReconciliationConflict


ORDERS = [
    {"order_id": "BOOKING_1001", "amount": 90_000, "order_info": "Ve xem phim - 1 ghe thuong"},
    {"order_id": "BOOKING_1002", "amount": 180_000, "order_info": "Ve xem phim - 2 ghe thuong"},
    {"order_id": "BOOKING_1003", "amount": 250_000, "order_info": "Ve xem phim - ghe doi"},
    {"order_id": "BOOKING_1004", "amount": 100_000, "order_info": "Combo bap nuoc"},
    {"order_id": "ORDER1", "amount": 100_000, "order_info": None},
]


async def seed():
    """Seed the database with sample data. Existing orders are left alone."""
    await init_db()

    async with async_session() as session:
        for order_data in ORDERS:
            try:
                await ensure_pending_order(session, **order_data)
            except ReconciliationConflict as e:
                print(f"Skipping {order_data['order_id']}: {e.reason}")

    print(f"Seeded {len(ORDERS)} pending orders.")


if __name__ == "__main__":
    asyncio.run(seed())
