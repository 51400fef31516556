from __future__ import annotations

import html
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from tasknest.logging import get_logger
from tasknest.service.verification import Purpose

logger = get_logger(__name__)

SUBJECTS = {
    Purpose.SIGNUP: "signup email verification",
    Purpose.RESET_PASSWORD: "reset password email verification",
}

_HEADINGS = {
    Purpose.SIGNUP: "Confirm your email address",
    Purpose.RESET_PASSWORD: "Reset your password",
}


def _redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """Transactional email over SMTP (STARTTLS or implicit TLS).

    Without an SMTP host and sender address the service runs in dev mode:
    messages are logged instead of sent and every send reports success.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "TaskNest",
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _build_message(self, to_email: str, subject: str, html_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def send(self, to_email: str, subject: str, html_body: str) -> bool:
        """Send one HTML message; True when the SMTP server accepted it."""
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=_redact_email(to_email),
                subject=subject,
                body_preview=html_body[:200],
            )
            return True

        try:
            msg = self._build_message(to_email, subject, html_body)
            context = ssl.create_default_context()
            logger.debug(
                "email_connecting",
                host=self.smtp_host,
                port=self.smtp_port,
                use_tls=self.smtp_use_tls,
                to=_redact_email(to_email),
            )
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info("email_sent", to=_redact_email(to_email), subject=subject)
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=_redact_email(to_email),
                host=self.smtp_host,
                error=str(e),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=_redact_email(to_email),
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=_redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except ssl.SSLError as e:
            logger.error(
                "email_ssl_error",
                to=_redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error=str(e),
            )
            return False
        except OSError as e:
            # Connection refused, DNS failure and socket timeouts
            logger.error(
                "email_connect_failed",
                to=_redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    def send_verification_code(self, to_email: str, code: str, purpose: Purpose) -> bool:
        subject = SUBJECTS[purpose]
        html_body = f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; color: #1f2933;">
    <h2>{_HEADINGS[purpose]}</h2>
    <p>Enter the following code to continue. It expires in a few minutes.</p>
    <p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{html.escape(code)}</p>
    <p style="color: #616e7c;">If you did not request this code you can ignore this email.</p>
</body>
</html>
"""
        return self.send(to_email, subject, html_body)
