"""Tests for outbound email delivery."""

import smtplib
from unittest.mock import patch

import pytest

from media_service.notifier import EmailNotifier, build_payment_confirmation_email


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def smtp_settings(local_settings):
    return local_settings.model_copy(
        update={
            "smtp_username": "desk@example.com",
            "smtp_password": "app-password",
            "smtp_port": 587,
            "smtp_retry_base_delay_seconds": 2.0,
            "smtp_max_attempts": 3,
            "smtp_overall_deadline_seconds": 120.0,
        }
    )


@pytest.fixture
def clock():
    return FakeClock()


def _notifier(settings, clock):
    return EmailNotifier(settings, sleep=clock.sleep, clock=clock)


class TestSend:
    def test_delivers_over_starttls(self, smtp_settings, clock):
        with patch("media_service.notifier.smtplib.SMTP") as smtp_cls:
            result = _notifier(smtp_settings, clock).send("payer@example.com", "Hi", "<p>Hello</p>")

        server = smtp_cls.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("desk@example.com", "app-password")
        sender, recipients, body = server.sendmail.call_args.args
        assert sender == "desk@example.com"
        assert recipients == ["payer@example.com"]
        assert "Hello" in body
        assert result.delivered is True
        assert result.attempts == 1
        assert result.message_id
        assert clock.sleeps == []

    def test_implicit_tls_port(self, smtp_settings, clock):
        settings = smtp_settings.model_copy(update={"smtp_port": 465})
        with patch("media_service.notifier.smtplib.SMTP_SSL") as ssl_cls:
            result = _notifier(settings, clock).send("payer@example.com", "Hi", "<p>Hello</p>")

        ssl_cls.return_value.starttls.assert_not_called()
        assert result.delivered is True

    def test_retries_with_linear_backoff(self, smtp_settings, clock):
        with patch("media_service.notifier.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.sendmail.side_effect = [smtplib.SMTPServerDisconnected("gone"), {}]
            result = _notifier(smtp_settings, clock).send("payer@example.com", "Hi", "<p>x</p>")

        assert result.delivered is True
        assert result.attempts == 2
        assert clock.sleeps == [2.0]

    def test_gives_up_after_max_attempts(self, smtp_settings, clock):
        with patch("media_service.notifier.smtplib.SMTP") as smtp_cls:
            smtp_cls.side_effect = OSError("connection refused")
            result = _notifier(smtp_settings, clock).send("payer@example.com", "Hi", "<p>x</p>")

        assert result.delivered is False
        assert result.attempts == 3
        assert clock.sleeps == [2.0, 4.0]
        assert "connection refused" in result.warning

    def test_authentication_error_is_not_retried(self, smtp_settings, clock):
        with patch("media_service.notifier.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad creds")
            result = _notifier(smtp_settings, clock).send("payer@example.com", "Hi", "<p>x</p>")

        assert result.delivered is False
        assert result.attempts == 1
        assert clock.sleeps == []
        smtp_cls.return_value.sendmail.assert_not_called()

    def test_overall_deadline_stops_retries(self, smtp_settings, clock):
        settings = smtp_settings.model_copy(update={"smtp_overall_deadline_seconds": 3.0})
        with patch("media_service.notifier.smtplib.SMTP") as smtp_cls:
            smtp_cls.side_effect = OSError("timed out")
            result = _notifier(settings, clock).send("payer@example.com", "Hi", "<p>x</p>")

        assert result.delivered is False
        assert result.attempts == 2
        assert clock.sleeps == [2.0]

    def test_missing_credentials_returns_warning(self, local_settings, clock):
        with patch("media_service.notifier.smtplib.SMTP") as smtp_cls:
            result = _notifier(local_settings, clock).send("payer@example.com", "Hi", "<p>x</p>")

        smtp_cls.assert_not_called()
        assert result.delivered is False
        assert result.attempts == 0
        assert "SMTP_USERNAME" in result.warning


def test_payment_confirmation_email_escapes_fields():
    subject, body = build_payment_confirmation_email("<Hack> Night", amount=250, reference="ref&1")
    assert subject == "Payment received for <Hack> Night"
    assert "&lt;Hack&gt; Night" in body
    assert "250.00" in body
    assert "ref&amp;1" in body
