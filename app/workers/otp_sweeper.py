import asyncio

import redis.asyncio as redis

from app.core.config import settings
from app.core.db import SessionLocal
from app.core.logging import get_logger
from app.core.redis import RedisClient
from app.services.otp import sweep_expired

logger = get_logger("worker.otp_sweeper")

LOCK_KEY = "lock:otp_sweeper"


async def _acquire_lock(redis_conn: redis.Redis) -> bool:
    # one replica sweeps per tick; the others skip it
    return await redis_conn.set(LOCK_KEY, "1", ex=settings.otp.sweep_lock_ttl_s, nx=True) is True


async def run_once(redis_conn: redis.Redis | None = None) -> int:
    redis_conn = redis_conn or RedisClient.get_client()
    if not await _acquire_lock(redis_conn):
        return 0
    async with SessionLocal() as db:
        return await sweep_expired(db)


async def run_forever(redis_conn: redis.Redis | None = None) -> None:
    logger.info("otp sweeper started, interval=%ss", settings.otp.sweep_interval_s)
    while True:
        try:
            await run_once(redis_conn)
        except Exception:
            logger.exception("otp sweeper tick failed")
        await asyncio.sleep(settings.otp.sweep_interval_s)


def main() -> None:
    asyncio.run(run_forever())


if __name__ == "__main__":
    main()
