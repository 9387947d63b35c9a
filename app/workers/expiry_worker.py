import asyncio
import signal
import logging
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError, DBAPIError
from app.core.config import DATABASE_URL, EXPIRY_INTERVAL_SECONDS, EXPIRY_BATCH
from app.core.ctx import REDIS_CTX
from app.core.redis import create_redis
from app.services.payment_service import expire_pending_payments


logger = logging.getLogger("expiry.worker")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


async def sweep_once(session, batch: int = EXPIRY_BATCH) -> int:
    """Run batches until one comes back short. Returns the number of payments expired."""
    expired = 0
    while True:
        async with session() as db:
            async with db.begin():
                stats = await expire_pending_payments(db, limit=batch)
        expired += stats.payments_expired
        if stats.payments_expired < batch:
            return expired


async def run() -> None:
    r = await create_redis()
    REDIS_CTX.set(r)

    engine = create_async_engine(DATABASE_URL, pool_pre_ping=True)
    session = async_sessionmaker(bind=engine, expire_on_commit=False)

    stop = asyncio.Event()

    def _graceful(*_):
        stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _graceful)
        except NotImplementedError:
            pass

    logger.info("Expiry worker started | interval_s=%d batch=%d", EXPIRY_INTERVAL_SECONDS, EXPIRY_BATCH)

    try:
        while not stop.is_set():
            try:
                expired = await sweep_once(session)
                if expired:
                    logger.info("Sweep released %d pending payments", expired)
            except (DBAPIError, SQLAlchemyError):
                logger.exception("Sweep failed; retrying next interval")
            try:
                await asyncio.wait_for(stop.wait(), timeout=EXPIRY_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                pass
    finally:
        logger.info("Shutting down expiry worker...")
        try:
            await r.aclose()
        except Exception:
            logger.exception("Redis close failed")
        try:
            await engine.dispose()
        except Exception:
            logger.exception("Engine dispose failed")
        logger.info("Expiry worker stopped.")


if __name__ == "__main__":
    asyncio.run(run())
