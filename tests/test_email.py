from unittest.mock import AsyncMock

import pytest

from app.services.email import MailNotifier

pytestmark = pytest.mark.asyncio


async def test_send_otp_puts_code_in_message():
    mailer = AsyncMock()
    notifier = MailNotifier(mailer)

    assert await notifier.send_otp("jane@example.com", "482913") is True

    message = mailer.send_message.await_args.args[0]
    assert "jane@example.com" in str(message.recipients[0])
    assert "482913" in message.body
    assert "10 minutes" in message.body


async def test_delivery_errors_are_reported_not_raised():
    mailer = AsyncMock()
    mailer.send_message.side_effect = ConnectionError("smtp down")
    notifier = MailNotifier(mailer)

    assert await notifier.send_otp("jane@example.com", "482913") is False
    assert await notifier.send_welcome("jane@example.com", "Jane") is False


async def test_welcome_escapes_name():
    mailer = AsyncMock()
    notifier = MailNotifier(mailer)

    assert await notifier.send_welcome("jane@example.com", "<b>Jane</b>") is True
    body = mailer.send_message.await_args.args[0].body
    assert "&lt;b&gt;Jane&lt;/b&gt;" in body
