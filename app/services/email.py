from datetime import datetime, timezone
from functools import lru_cache
from html import escape
from typing import Protocol

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema

from app.core.config import settings
from app.core.logging import get_logger, mask_email

logger = get_logger(__name__)

_FOOTER = (
    '<hr style="margin-top: 40px; border: none; border-top: 1px solid #eee;" />'
    '<small style="color: #666;">&copy; {year} CardCRM. All rights reserved.</small>'
)

OTP_TEMPLATE = (
    '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: auto; padding: 20px;">'
    '<h2 style="color: #333;">Email Verification</h2>'
    "<p>Hello,</p>"
    "<p>Your verification code is:</p>"
    '<div style="text-align: center; margin: 20px 0;">'
    '<span style="font-size: 36px; font-weight: bold; letter-spacing: 10px;">{code}</span>'
    "</div>"
    "<p>This code is valid for {ttl} minutes.</p>"
    "<p>If you did not request this code, please ignore this email.</p>"
    "<p>Thanks,<br />CardCRM Team</p>" + _FOOTER + "</div>"
)

WELCOME_TEMPLATE = (
    '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: auto; padding: 20px;">'
    '<h2 style="color: #333;">Welcome to CardCRM, {name}!</h2>'
    "<p>Your account has been successfully verified.</p>"
    "<p>Best regards,<br />CardCRM Team</p>" + _FOOTER + "</div>"
)


class OtpNotifier(Protocol):
    async def send_otp(self, email: str, code: str) -> bool: ...

    async def send_welcome(self, email: str, first_name: str) -> bool: ...


class MailNotifier:
    """Delivers verification and welcome emails over SMTP. Never retries."""

    def __init__(self, mailer: FastMail):
        self.mailer = mailer

    async def _send(self, subject: str, recipient: str, body: str) -> bool:
        message = MessageSchema(subject=subject, recipients=[recipient], body=body, subtype="html")
        try:
            await self.mailer.send_message(message)
        except Exception:
            logger.warning("failed to send %r to %s", subject, mask_email(recipient), exc_info=True)
            return False
        return True

    async def send_otp(self, email: str, code: str) -> bool:
        body = OTP_TEMPLATE.format(
            code=code, ttl=settings.otp.ttl_minutes, year=datetime.now(timezone.utc).year
        )
        return await self._send("Email Verification Code for CardCRM", email, body)

    async def send_welcome(self, email: str, first_name: str) -> bool:
        body = WELCOME_TEMPLATE.format(name=escape(first_name), year=datetime.now(timezone.utc).year)
        return await self._send("Welcome to CardCRM!", email, body)


@lru_cache
def get_notifier() -> OtpNotifier:
    conf = ConnectionConfig(
        MAIL_USERNAME=settings.mail_username,
        MAIL_PASSWORD=settings.mail_password,
        MAIL_FROM=settings.mail_sender,
        MAIL_PORT=settings.mail_port,
        MAIL_SERVER=settings.mail_host,
        MAIL_FROM_NAME=settings.mail_from_name,
        MAIL_STARTTLS=settings.mail_use_tls,
        MAIL_SSL_TLS=settings.mail_use_ssl,
        USE_CREDENTIALS=True,
    )
    return MailNotifier(FastMail(conf))
