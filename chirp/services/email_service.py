import logging
import re
import smtplib
from email.message import EmailMessage
from html import escape

from chirp.config import settings

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")

_FOOTER = (
    "<p>Best regards,<br>The Chirp Team</p>"
    "<p><small>This is an automated email. Please do not reply to this message.</small></p>"
)


def _html_to_text(html_body: str) -> str:
    text = _TAG_RE.sub("\n", html_body)
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


class EmailNotifier:
    """SMTP delivery. Raises on any failure; callers decide whether that matters."""

    def send(self, to: str, subject: str, html_body: str) -> None:
        if not settings.SMTP_HOST or not settings.SMTP_FROM_EMAIL:
            raise RuntimeError("SMTP is not configured (SMTP_HOST and SMTP_FROM_EMAIL are required).")

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
        message["To"] = to
        message.set_content(_html_to_text(html_body))
        message.add_alternative(html_body, subtype="html")

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
            smtp.ehlo()
            if settings.SMTP_USE_TLS:
                smtp.starttls()
                smtp.ehlo()
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            smtp.send_message(message)
        logger.info("Email %r sent", subject)

    def send_welcome_email(self, to: str, username: str) -> None:
        html = (
            f"<p>Hello <strong>{escape(username)}</strong>,</p>"
            "<p>Welcome to Chirp! Your account has been created and you're ready to start "
            "sharing your thoughts with the world.</p>"
            "<p>Start posting, following others, and engaging with the community!</p>"
            f"{_FOOTER}"
        )
        self.send(to, "Welcome to Chirp!", html)

    def send_otp_email(self, to: str, code: str, username: str) -> None:
        html = (
            f"<p>Hello <strong>{escape(username)}</strong>,</p>"
            "<p>We received a request to reset your password. "
            "Use the following code to complete the process:</p>"
            f"<h2>{code}</h2>"
            f"<p>The code expires in {settings.OTP_EXPIRE_MINUTES} minutes. "
            "If you did not request this, ignore this message.</p>"
            f"{_FOOTER}"
        )
        self.send(to, "Password Reset OTP - Chirp", html)

    def send_password_changed_email(self, to: str, username: str) -> None:
        html = (
            f"<p>Hello <strong>{escape(username)}</strong>,</p>"
            "<p>Your password has been successfully changed and you have been signed out "
            "on all devices. If you made this change, you can safely ignore this email.</p>"
            "<p>If you did not change your password, reset it immediately.</p>"
            f"{_FOOTER}"
        )
        self.send(to, "Password Changed - Chirp", html)
