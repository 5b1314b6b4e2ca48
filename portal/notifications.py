import smtplib
from decimal import Decimal
from email.message import EmailMessage
from functools import lru_cache

import structlog

from portal.config import Settings, get_settings

logger = structlog.get_logger(__name__)


def payment_confirmation_email(customer_name: str, product_name: str, amount: Decimal,
                               order_id: str, app_url: str) -> tuple[str, str]:
    subject = f"Payment Confirmed - {product_name}"
    body = (
        f"Hi {customer_name},\n\n"
        "Thank you for your purchase! Your payment has been successfully processed.\n\n"
        f"Product: {product_name}\n"
        f"Amount: ${amount:,.2f} USD\n"
        f"Order ID: {order_id}\n\n"
        "Next step: please complete the intake form so we can get started on your project:\n"
        f"{app_url}/intake/{order_id}\n"
    )
    return subject, body


def contact_form_email(first_name: str, last_name: str, email: str, company: str | None,
                       subject: str, message: str) -> tuple[str, str]:
    body = (
        f"From: {first_name} {last_name} <{email}>\n"
        f"Company: {company or '-'}\n"
        f"Subject: {subject}\n\n"
        f"{message}\n"
    )
    return f"Contact Form: {subject}", body


class Notifier:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def send_email(self, to: str, subject: str, body: str) -> bool:
        try:
            if self.settings.email_backend == "smtp":
                self._send_smtp(to, subject, body)
            else:
                logger.info("email_console", to=to, subject=subject, body=body)
        except Exception as e:
            logger.error("email_send_failed", to=to, subject=subject, error=str(e))
            return False
        logger.info("email_sent", to=to, subject=subject)
        return True

    def _send_smtp(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.settings.email_from
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP_SSL(self.settings.smtp_host, self.settings.smtp_port, timeout=10) as smtp:
            if self.settings.smtp_user:
                smtp.login(self.settings.smtp_user, self.settings.smtp_password)
            smtp.send_message(message)

    def send_payment_confirmation(self, to: str | None, customer_name: str | None,
                                  product_name: str, amount: Decimal, order_id: str) -> bool:
        if not to:
            logger.warning("email_skipped_no_recipient", order_id=order_id)
            return False
        subject, body = payment_confirmation_email(
            customer_name or "Valued Customer", product_name, amount, order_id, self.settings.app_url
        )
        return self.send_email(to, subject, body)

    def send_contact_message(self, first_name: str, last_name: str, email: str,
                             company: str | None, subject: str, message: str) -> bool:
        to = self.settings.contact_email or self.settings.email_from
        subject, body = contact_form_email(first_name, last_name, email, company, subject, message)
        return self.send_email(to, subject, body)


@lru_cache()
def get_notifier() -> Notifier:
    return Notifier()
