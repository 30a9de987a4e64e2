"""
Background loop removing expired checkout sessions that never became orders.
"""
import asyncio
import logging

from app.config import settings
from app.database import SessionLocal
from app.services.checkout import cleanup_expired_sessions, purge_rate_counters

logger = logging.getLogger(__name__)

FIRST_RUN_DELAY_SEC = 60


def run_checkout_cleanup() -> int:
    db = SessionLocal()
    try:
        removed = cleanup_expired_sessions(db)
        purge_rate_counters(db)
        db.commit()
        return removed
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def checkout_cleanup_loop() -> None:
    await asyncio.sleep(FIRST_RUN_DELAY_SEC)
    logger.info("Checkout cleanup started (interval=%ss)", settings.CHECKOUT_CLEANUP_INTERVAL_SEC)
    while True:
        try:
            removed = await asyncio.to_thread(run_checkout_cleanup)
            if removed:
                logger.info("Checkout cleanup removed %s expired session(s)", removed)
        except Exception as e:
            logger.exception("Checkout cleanup failed: %s", e)
        await asyncio.sleep(settings.CHECKOUT_CLEANUP_INTERVAL_SEC)
