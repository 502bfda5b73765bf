from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.models.email_verification import EmailVerification
from app.services import otp
from app.workers import otp_sweeper

pytestmark = pytest.mark.asyncio


async def test_run_once_sweeps_expired_codes(db, redis_conn):
    now = datetime.now(timezone.utc)
    await otp.issue(db, "stale@x.com", now=now - timedelta(hours=1))
    await otp.issue(db, "fresh@x.com", now=now)

    assert await otp_sweeper.run_once(redis_conn) == 1

    async with db.begin():
        emails = (await db.execute(select(EmailVerification.email))).scalars().all()
    assert emails == ["fresh@x.com"]


async def test_run_once_skips_while_another_sweeper_holds_the_lock(db, redis_conn):
    await otp.issue(db, "stale@x.com", now=datetime.now(timezone.utc) - timedelta(hours=1))
    await redis_conn.set(otp_sweeper.LOCK_KEY, "1", ex=60)

    assert await otp_sweeper.run_once(redis_conn) == 0

    async with db.begin():
        remaining = (await db.execute(select(EmailVerification))).scalars().all()
    assert len(remaining) == 1
