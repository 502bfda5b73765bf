import hashlib

import redis.asyncio as redis

from app.core.config import settings

LOCK_PREFIX = "auth:lock:"
IP_COUNTER_PREFIX = "auth:ip:"
EMAIL_COUNTER_PREFIX = "auth:email:"
FAIL_COUNTER_PREFIX = "auth:fail:"
RESEND_COUNTER_PREFIX = "otp:resend:"


def _hash_ip(ip: str | None) -> str:
    if not ip:
        return "unknown"
    return hashlib.sha256(ip.encode()).hexdigest()


def _email_key(email: str) -> str:
    return email.strip().lower()


def _lock_key(email: str) -> str:
    return f"{LOCK_PREFIX}{_email_key(email)}"


def _fail_key(email: str) -> str:
    return f"{FAIL_COUNTER_PREFIX}{_email_key(email)}"


async def _hit(redis_conn: redis.Redis, key: str, window_s: int) -> int:
    count = await redis_conn.incr(key)
    if count == 1:
        await redis_conn.expire(key, window_s)
    return count


async def hit_signin(redis_conn: redis.Redis, email: str, ip: str | None) -> tuple[int, int]:
    ip_count = await _hit(
        redis_conn, f"{IP_COUNTER_PREFIX}{_hash_ip(ip)}", settings.rate_limit.signin_ip_window_s
    )
    email_count = await _hit(
        redis_conn,
        f"{EMAIL_COUNTER_PREFIX}{_email_key(email)}",
        settings.rate_limit.signin_email_window_s,
    )
    return ip_count, email_count


def is_rate_limited(ip_count: int, email_count: int) -> bool:
    return (
        ip_count > settings.rate_limit.signin_ip_max
        or email_count > settings.rate_limit.signin_email_max
    )


async def after_fail(redis_conn: redis.Redis, email: str) -> bool:
    """Count a failed sign-in; lock the email once the limit is reached."""
    fails = await _hit(redis_conn, _fail_key(email), settings.rate_limit.signin_email_window_s)
    if fails >= settings.rate_limit.signin_email_max:
        await lock(redis_conn, email, settings.rate_limit.lock_minutes * 60)
        return True
    return False


async def reset_fail(redis_conn: redis.Redis, email: str) -> None:
    await redis_conn.delete(_fail_key(email))


async def is_locked(redis_conn: redis.Redis, email: str) -> bool:
    return bool(await redis_conn.exists(_lock_key(email)))


async def lock(redis_conn: redis.Redis, email: str, ttl_s: int) -> None:
    await redis_conn.set(_lock_key(email), 1, ex=ttl_s)


async def hit_resend(redis_conn: redis.Redis, email: str) -> int | None:
    """Count a code resend. Returns seconds to wait when over the limit, else None."""
    key = f"{RESEND_COUNTER_PREFIX}{_email_key(email)}"
    count = await _hit(redis_conn, key, settings.rate_limit.resend_window_s)
    if count <= settings.rate_limit.resend_max:
        return None
    ttl = await redis_conn.ttl(key)
    return ttl if ttl and ttl > 0 else settings.rate_limit.resend_window_s
