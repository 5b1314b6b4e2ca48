from decimal import Decimal

from portal.config import Settings
from portal.notifications import Notifier


def test_contact_message_goes_to_contact_inbox(monkeypatch, mocker):
    monkeypatch.setenv("CONTACT_EMAIL", "hello@agency-hq.com")
    notifier = Notifier(Settings())
    send = mocker.patch.object(notifier, "send_email", return_value=True)

    assert notifier.send_contact_message(
        "Dana", "Client", "dana@acme-marketing.com", "Acme", "Quote", "Need a new website soon."
    ) is True

    to, subject, body = send.call_args.args
    assert to == "hello@agency-hq.com"
    assert subject == "Contact Form: Quote"
    assert "Dana Client <dana@acme-marketing.com>" in body
    assert "Company: Acme" in body


def test_contact_inbox_falls_back_to_smtp_user(monkeypatch):
    monkeypatch.delenv("CONTACT_EMAIL", raising=False)
    monkeypatch.setenv("SMTP_USER", "mailer@agency-hq.com")

    assert Settings().contact_email == "mailer@agency-hq.com"


def test_payment_confirmation_without_recipient_is_skipped(mocker):
    notifier = Notifier(Settings())
    send = mocker.patch.object(notifier, "send_email")

    assert notifier.send_payment_confirmation(None, None, "Local SEO Package",
                                              Decimal("2000"), "order-1") is False
    send.assert_not_called()


def test_smtp_failure_is_reported_not_raised(monkeypatch, mocker):
    monkeypatch.setenv("EMAIL_BACKEND", "smtp")
    mocker.patch("portal.notifications.smtplib.SMTP_SSL", side_effect=OSError("connection refused"))

    assert Notifier(Settings()).send_email("dana@acme-marketing.com", "Hi", "Body") is False
