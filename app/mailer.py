"""
mailer.py — Outbound e-mail for password reset codes
====================================================
Sends through SMTP when ECOSYSTEM_SMTP_HOST is configured. Failures are
logged and reported to the caller as False; the reset flow never reveals
delivery problems to the requester.
"""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .config import settings

logger = logging.getLogger("ecosystem.mailer")


def smtp_configured() -> bool:
    return bool(settings.smtp_host)


def send_email(to_addr: str, subject: str, body: str) -> bool:
    if not smtp_configured():
        logger.warning("SMTP not configured; e-mail to %s not sent", to_addr)
        return False

    msg = MIMEMultipart()
    msg["From"] = settings.smtp_from
    msg["To"] = to_addr
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    try:
        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10)
        try:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_username and settings.smtp_password:
                server.login(settings.smtp_username, settings.smtp_password)
            server.sendmail(settings.smtp_from, [to_addr], msg.as_string())
        finally:
            server.quit()
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("E-mail to %s failed: %s", to_addr, exc)
        return False

    logger.info("E-mail %r sent to %s", subject, to_addr)
    return True


def send_reset_code(to_addr: str, code: str) -> bool:
    minutes = settings.otp_expiry_minutes
    body = (
        f"Your {settings.totp_issuer} password reset code is {code}.\n\n"
        f"It expires in {minutes} minutes. If you did not request a reset, "
        "you can ignore this message."
    )
    return send_email(to_addr, f"{settings.totp_issuer} password reset", body)
