import smtplib

import pytest

from billsplit.config import Settings
from billsplit.services.mailer import DEV_MESSAGE_ID, Mailer


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "postgresql://localhost/billsplit",
        "APP_ENV": "development",
        "EMAIL_USER": None,
        "EMAIL_PASS": None,
        "EMAIL_FROM_NAME": "Bill Splitter",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.mark.asyncio
async def test_send_skipped_without_credentials_in_development():
    mailer = Mailer(make_settings())

    result = await mailer.send("bob@example.com", "Hi", "Body")

    assert result.success is True
    assert result.message_id == DEV_MESSAGE_ID


@pytest.mark.asyncio
async def test_send_fails_without_credentials_in_production():
    mailer = Mailer(make_settings(APP_ENV="production"))

    result = await mailer.send("bob@example.com", "Hi", "Body")

    assert result.success is False
    assert "credentials" in (result.error or "")


@pytest.mark.asyncio
async def test_send_uses_transport():
    sent = []
    mailer = Mailer(make_settings(EMAIL_USER="bills@example.com", EMAIL_PASS="secret"), transport=sent.append)

    result = await mailer.send("bob@example.com", "Payment Due", "Pay Alice 50.00 USD")

    assert result.success is True
    assert len(sent) == 1
    message = sent[0]
    assert message["To"] == "bob@example.com"
    assert message["Subject"] == "Payment Due"
    assert "bills@example.com" in message["From"]
    assert result.message_id == message["Message-ID"]
    assert "Pay Alice" in message.get_content()


@pytest.mark.asyncio
async def test_transport_errors_are_reported():
    def broken(message):
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    mailer = Mailer(make_settings(EMAIL_USER="bills@example.com", EMAIL_PASS="secret"), transport=broken)

    result = await mailer.send("bob@example.com", "Hi", "Body")

    assert result.success is False
    assert "bad credentials" in (result.error or "")


@pytest.mark.asyncio
async def test_verify_requires_credentials():
    result = await Mailer(make_settings()).verify()

    assert result.success is False
