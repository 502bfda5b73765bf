"""Email verification codes.

One record per email address lives in ``email_verifications``. A record is
ACTIVE until it expires, is locked by too many failed attempts, or is consumed
by a successful verification (which deletes it). Re-issuing a code overwrites
the record and clears the attempt counter.

Attempt increments and consumption are conditional statements, so two
requests racing on the same email cannot both get past the attempt cap or
both consume one code.
"""

import enum
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger, mask_email
from app.models.email_verification import EmailVerification

logger = get_logger(__name__)

CODE_LENGTH = settings.otp.code_length
OTP_TTL = timedelta(minutes=settings.otp.ttl_minutes)
MAX_ATTEMPTS = settings.otp.max_attempts


class OtpFailure(str, enum.Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    INVALID_CODE = "invalid_code"


@dataclass(frozen=True)
class VerifyResult:
    ok: bool
    reason: Optional[OtpFailure] = None
    attempts: Optional[int] = None

    @classmethod
    def success(cls) -> "VerifyResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: OtpFailure, attempts: Optional[int] = None) -> "VerifyResult":
        return cls(ok=False, reason=reason, attempts=attempts)


class OtpIssueError(Exception):
    """The code could not be stored, so it must not be reported as sent."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back naive; they were written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_code() -> str:
    low = 10 ** (CODE_LENGTH - 1)
    high = 10**CODE_LENGTH - 1
    return str(low + secrets.randbelow(high - low + 1))


async def _overwrite(db: AsyncSession, email: str, code: str, expires_at: datetime) -> bool:
    result = await db.execute(
        update(EmailVerification)
        .where(EmailVerification.email == email)
        .values(code=code, expires_at=expires_at, attempts=0)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def issue(db: AsyncSession, email: str, *, now: Optional[datetime] = None) -> str:
    """Store a fresh code for ``email`` and return it.

    Delivery is the caller's job. Raises ``OtpIssueError`` when the record
    could not be written.
    """
    now = now or _utcnow()
    code = generate_code()
    expires_at = now + OTP_TTL

    try:
        try:
            async with db.begin():
                if not await _overwrite(db, email, code, expires_at):
                    db.add(
                        EmailVerification(email=email, code=code, expires_at=expires_at, attempts=0)
                    )
        except IntegrityError:
            # a concurrent issue inserted the row first
            async with db.begin():
                if not await _overwrite(db, email, code, expires_at):
                    raise OtpIssueError(f"verification record for {mask_email(email)} vanished")
    except SQLAlchemyError as exc:
        logger.exception("failed to store verification code for %s", mask_email(email))
        raise OtpIssueError("failed to store verification code") from exc

    logger.info("issued verification code for %s", mask_email(email))
    return code


async def _load(db: AsyncSession, email: str) -> Optional[EmailVerification]:
    result = await db.execute(
        select(EmailVerification)
        .where(EmailVerification.email == email)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _check_usable(record: Optional[EmailVerification], now: datetime) -> Optional[VerifyResult]:
    if record is None:
        return VerifyResult.failure(OtpFailure.NOT_FOUND)
    if now >= _as_utc(record.expires_at):
        return VerifyResult.failure(OtpFailure.EXPIRED)
    if record.attempts >= MAX_ATTEMPTS:
        return VerifyResult.failure(OtpFailure.TOO_MANY_ATTEMPTS, record.attempts)
    return None


async def _record_failure(db: AsyncSession, record: EmailVerification, now: datetime) -> VerifyResult:
    result = await db.execute(
        update(EmailVerification)
        .where(
            EmailVerification.email == record.email,
            EmailVerification.code == record.code,
            EmailVerification.attempts < MAX_ATTEMPTS,
        )
        .values(attempts=EmailVerification.attempts + 1)
        .execution_options(synchronize_session=False)
    )
    current = await _load(db, record.email)
    if result.rowcount == 0:
        return _check_usable(current, now) or VerifyResult.failure(
            OtpFailure.INVALID_CODE, current.attempts
        )
    return VerifyResult.failure(OtpFailure.INVALID_CODE, current.attempts if current else None)


async def _consume(db: AsyncSession, record: EmailVerification, now: datetime) -> VerifyResult:
    result = await db.execute(
        delete(EmailVerification)
        .where(
            EmailVerification.email == record.email,
            EmailVerification.code == record.code,
            EmailVerification.attempts < MAX_ATTEMPTS,
            EmailVerification.expires_at > now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # lost the race: consumed, locked or re-issued meanwhile
        current = await _load(db, record.email)
        return _check_usable(current, now) or VerifyResult.failure(
            OtpFailure.INVALID_CODE, current.attempts
        )
    return VerifyResult.success()


async def verify(
    db: AsyncSession, email: str, submitted_code: str, *, now: Optional[datetime] = None
) -> VerifyResult:
    """Check ``submitted_code`` against the outstanding code for ``email``.

    Checks run in a fixed order: existence, expiry, lockout, match. Only a
    mismatch on a usable record counts as an attempt.
    """
    now = now or _utcnow()

    async with db.begin():
        record = await _load(db, email)
        rejected = _check_usable(record, now)
        if rejected is None:
            if secrets.compare_digest(record.code.encode(), submitted_code.encode()):
                outcome = await _consume(db, record, now)
            else:
                outcome = await _record_failure(db, record, now)
        else:
            outcome = rejected

    if outcome.ok:
        logger.info("verified code for %s", mask_email(email))
    else:
        logger.warning(
            "verification failed for %s: %s (attempts=%s)",
            mask_email(email),
            outcome.reason.value,
            outcome.attempts,
        )
    return outcome


async def sweep_expired(db: AsyncSession, *, now: Optional[datetime] = None) -> int:
    """Delete every record past its expiry. Best effort: errors are logged."""
    now = now or _utcnow()
    try:
        async with db.begin():
            result = await db.execute(
                delete(EmailVerification)
                .where(EmailVerification.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
    except SQLAlchemyError:
        logger.exception("failed to sweep expired verification codes")
        return 0

    removed = result.rowcount or 0
    if removed:
        logger.info("swept %d expired verification codes", removed)
    return removed
