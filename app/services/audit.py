from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuthAudit


async def record_event(
    db: AsyncSession,
    *,
    event: str,
    user_id: str | None = None,
    email: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    db.add(AuthAudit(user_id=user_id, email=email, event=event, ip=ip, ua=user_agent))
    await db.flush()
