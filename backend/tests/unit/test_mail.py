from unittest.mock import MagicMock, patch

import pytest

from app.core.config import SMTPConfig
from app.core.mail import EmailService


def _smtp_config(**overrides) -> SMTPConfig:
    values = dict(
        host="smtp.example.com",
        port=587,
        user="user@example.com",
        password="secret",
        from_email="no-reply@example.com",
        use_starttls=True,
    )
    values.update(overrides)
    return SMTPConfig(**values)


@pytest.fixture(autouse=True)
def _no_retry_wait(monkeypatch):
    # tenacity 重试之间不真正 sleep
    monkeypatch.setattr(EmailService._deliver.retry, "sleep", lambda _seconds: None)


def test_send_email_success():
    service = EmailService(smtp_config=_smtp_config())
    with patch("app.core.mail.smtplib.SMTP") as smtp:
        server = MagicMock()
        smtp.return_value.__enter__.return_value = server

        ok = service.send_email(
            to_email="to@example.com",
            subject="Decision on your submission",
            html_body="<p>Hello</p>",
            text_body="Hello",
        )
        assert ok is True
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user@example.com", "secret")
        server.sendmail.assert_called_once()


def test_send_email_retries_then_gives_up():
    service = EmailService(smtp_config=_smtp_config())
    with patch("app.core.mail.smtplib.SMTP") as smtp:
        server = MagicMock()
        server.sendmail.side_effect = RuntimeError("smtp down")
        smtp.return_value.__enter__.return_value = server

        ok = service.send_email(to_email="to@example.com", subject="s", html_body="<p>x</p>")

        assert ok is False
        assert server.sendmail.call_count == 3


def test_send_email_recovers_on_retry():
    service = EmailService(smtp_config=_smtp_config())
    with patch("app.core.mail.smtplib.SMTP") as smtp:
        server = MagicMock()
        server.sendmail.side_effect = [ConnectionError("reset"), None]
        smtp.return_value.__enter__.return_value = server

        assert service.send_email(to_email="to@example.com", subject="s", html_body="<p>x</p>") is True
        assert server.sendmail.call_count == 2


def test_send_email_skips_login_when_no_credentials():
    service = EmailService(smtp_config=_smtp_config(user=None, password=None, use_starttls=False))
    with patch("app.core.mail.smtplib.SMTP") as smtp:
        server = MagicMock()
        smtp.return_value.__enter__.return_value = server

        assert service.send_email(to_email="to@example.com", subject="s", html_body="<p>x</p>") is True
        server.starttls.assert_not_called()
        server.login.assert_not_called()


def test_send_email_returns_false_when_smtp_not_configured():
    service = EmailService(smtp_config=None)
    assert service.is_configured() is False
    assert service.send_email(to_email="to@example.com", subject="s", html_body="<p>x</p>") is False


def test_send_template_email_handles_missing_template():
    service = EmailService(smtp_config=_smtp_config())
    with patch.object(service, "send_email") as send:
        ok = service.send_template_email(
            to_email="to@example.com",
            subject="s",
            template_name="does_not_exist.html",
            context={},
        )
    assert ok is False
    send.assert_not_called()


@pytest.mark.parametrize(
    "template_name",
    [
        "submission_received.html",
        "reviewer_invitation.html",
        "review_reminder.html",
        "review_thank_you.html",
        "decision.html",
        "revision_submitted.html",
        "payment_request.html",
        "payment_received.html",
        "publication_notification.html",
        "status_update.html",
    ],
)
def test_templates_render_with_workflow_context(template_name):
    service = EmailService(smtp_config=None)
    html = service.render_template(
        template_name,
        {
            "subject": "Update",
            "recipient_name": "Ada <Author>",
            "submission_title": "Deep Sea Vents",
            "action_url": "http://localhost:3000/dashboard/submissions/s-1",
            "decision": "accepted",
            "due_date": "2026-11-01",
            "amount": 299.0,
            "currency": "INR",
            "invoice_number": "INV-2026-0001",
            "doi": "10.5555/jtest.2026.abcd1234",
            "revision_number": 1,
            "status": "accepted",
        },
    )
    assert "Deep Sea Vents" in html
    assert "Ada <Author>" not in html
