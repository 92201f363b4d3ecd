import logging
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import Optional, Tuple

from ..config import settings

logger = logging.getLogger(__name__)

MAX_SUBJECT_PREVIEW = 12


@dataclass
class SendResult:
    backend: str
    status_code: Optional[int]
    request_id: Optional[str]
    error: Optional[str]


def _mask_email(value: str) -> str:
    if "@" not in value:
        return "***"
    name, domain = value.split("@", 1)
    if not name:
        masked = "***"
    elif len(name) <= 2:
        masked = f"{name[0]}***"
    else:
        masked = f"{name[0]}***{name[-1]}"
    return f"{masked}@{domain}"


def _mask_subject(subject: str) -> str:
    if not subject:
        return ""
    preview = subject[:MAX_SUBJECT_PREVIEW]
    return f"{preview}... (len={len(subject)})"


def _backend_name() -> str:
    return (settings.email_backend or "local").strip().strip("'\"").lower()


def _resolve_sender() -> Tuple[str, str]:
    from_address = settings.email_from_address or "no-reply@gestion-locative.local"
    display_name = settings.email_from_name or "Gestion locative"
    return str(from_address), display_name


def _write_local_email(subject: str, body: str, recipient: str) -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
    safe_subject = "".join(ch for ch in subject if ch.isalnum() or ch in (" ", "_", "-")).strip() or "email"
    filename = f"{timestamp}_{safe_subject.replace(' ', '_')[:80]}.txt"
    output_dir = Path(settings.email_output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / filename
    contents = "\n".join(
        [
            f"Subject: {subject}",
            f"Recipient: {recipient}",
            "",
            body,
        ]
    )
    path.write_text(contents, encoding="utf-8")
    logger.info("[LOCAL EMAIL] %s", path)
    return str(path)


def _send_via_sendgrid(subject: str, body: str, recipient: str) -> SendResult:
    from_address, display_name = _resolve_sender()
    if not settings.sendgrid_api_key:
        raise RuntimeError("SendGrid backend requires SENDGRID_API_KEY.")

    from sendgrid import SendGridAPIClient
    from sendgrid.helpers.mail import Email, Mail

    message = Mail(
        from_email=Email(email=from_address, name=display_name),
        to_emails=[recipient],
        subject=subject,
        plain_text_content=body,
    )
    reply_to = settings.email_reply_to or from_address
    if reply_to:
        message.reply_to = Email(email=str(reply_to))
    client = SendGridAPIClient(settings.sendgrid_api_key)
    try:
        response = client.send(message)
    except Exception as exc:
        status_code = getattr(exc, "status_code", None)
        headers = getattr(exc, "headers", None) or {}
        request_id = headers.get("X-Message-Id") if isinstance(headers, dict) else None
        logger.exception("SendGrid dispatch failed (status=%s request_id=%s).", status_code, request_id)
        return SendResult(backend="sendgrid", status_code=status_code, request_id=request_id, error=str(exc))

    request_id = None
    if isinstance(response.headers, dict):
        request_id = response.headers.get("X-Message-Id") or response.headers.get("X-Request-Id")
    logger.info("Sent reminder via SendGrid (status=%s request_id=%s).", response.status_code, request_id)
    return SendResult(backend="sendgrid", status_code=response.status_code, request_id=request_id, error=None)


def _send_via_smtp(subject: str, body: str, recipient: str) -> SendResult:
    if not settings.email_host:
        raise RuntimeError("SMTP backend requires EMAIL_HOST.")
    if not settings.email_host_user or not settings.email_host_password:
        raise RuntimeError("SMTP backend requires EMAIL_HOST_USER and EMAIL_HOST_PASSWORD.")
    from_address, display_name = _resolve_sender()

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = formataddr((display_name, from_address))
    message["To"] = recipient
    reply_to = settings.email_reply_to or from_address
    if reply_to:
        message["Reply-To"] = str(reply_to)
    message.set_content(body)

    context = ssl.create_default_context()
    with smtplib.SMTP(settings.email_host, settings.email_port or 587) as connection:
        connection.ehlo()
        if settings.email_use_tls:
            connection.starttls(context=context)
            connection.ehlo()
        connection.login(settings.email_host_user, settings.email_host_password)
        connection.send_message(message)
    logger.info("Sent reminder via SMTP.")
    return SendResult(backend="smtp", status_code=250, request_id=None, error=None)


def send_notification(subject: str, body: str, recipient_email: str) -> SendResult:
    """Deliver one ``{subject, body, recipientEmail}`` message with the configured backend.

    Delivery failures are reported in ``SendResult.error`` rather than raised.
    """
    backend = _backend_name()
    recipient = (recipient_email or "").strip()
    if not recipient:
        logger.info("Email dispatch skipped: no recipient (subject=%s).", _mask_subject(subject))
        return SendResult(backend=backend, status_code=None, request_id=None, error="No recipient provided.")

    logger.info(
        "Dispatching email backend=%s to=%s subject=%s",
        backend,
        _mask_email(recipient),
        _mask_subject(subject),
    )
    try:
        if backend == "sendgrid":
            return _send_via_sendgrid(subject, body, recipient)
        if backend == "smtp":
            return _send_via_smtp(subject, body, recipient)
        if backend != "local":
            logger.warning("Unknown EMAIL_BACKEND '%s'. Defaulting to local stub.", backend)
        _write_local_email(subject, body, recipient)
        return SendResult(backend="local", status_code=200, request_id=None, error=None)
    except Exception as exc:
        logger.exception("Email dispatch failed for backend=%s.", backend)
        return SendResult(backend=backend, status_code=None, request_id=None, error=str(exc))
