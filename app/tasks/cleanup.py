import asyncio
import logging
from datetime import datetime
from typing import Optional
from sqlmodel import Session
from app.db.session import engine
from app.services.cart import CartService

logger = logging.getLogger(__name__)


def purge_expired_carts(now: Optional[datetime] = None, target_engine=None) -> int:
    with Session(target_engine or engine) as session:
        return CartService(session).purge_expired(now)


async def run_periodic_cleanup(interval_seconds: int) -> None:
    """Purge abandoned carts every ``interval_seconds`` until cancelled."""
    logger.info(f"Cart cleanup scheduled every {interval_seconds}s")
    while True:
        try:
            await asyncio.to_thread(purge_expired_carts)
        except Exception:
            # Keep the loop alive; the next run retries
            logger.exception("Cart cleanup run failed")
        await asyncio.sleep(interval_seconds)


if __name__ == "__main__":
    from app.core.logging import configure_logging

    configure_logging()
    removed = purge_expired_carts()
    print(f"Removed {removed} expired cart(s)")
