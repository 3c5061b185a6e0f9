import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from .config import (
    EMAIL_SENDER,
    EMAIL_SENDER_NAME,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_TIMEOUT,
    SMTP_USER,
)

logger = logging.getLogger(__name__)

def _sender() -> str:
    name = (EMAIL_SENDER_NAME or "").strip()
    return formataddr((name, EMAIL_SENDER)) if name else EMAIL_SENDER

def build_message(to: str, subject: str, body: str, html_body: str | None = None) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = _sender()
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body or "")
    if html_body:
        msg.add_alternative(html_body, subtype="html")
    return msg

def send_email(to: str, subject: str, body: str, html_body: str | None = None):
    """Deliver over SMTP, or log the message when no credentials are configured."""
    if not (SMTP_USER and SMTP_PASSWORD):
        logger.info("email stub to=%s subject=%r\n%s", to, subject, body)
        return
    msg = build_message(to, subject, body, html_body)
    with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT) as smtp:
        smtp.starttls()
        smtp.login(SMTP_USER, SMTP_PASSWORD)
        smtp.send_message(msg)
    logger.info("email sent to %s: %s", to, subject)
