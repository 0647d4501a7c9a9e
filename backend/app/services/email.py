"""
SMTP email transport.
"""
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Optional

import aiosmtplib

from app.core.config import settings
from app.core.exceptions import DeliveryFailure
from app.core.logging import notify_logger as logger


class EmailTransport:
    """Async email sender using aiosmtplib"""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ):
        self.host = host if host is not None else settings.SMTP_HOST
        self.port = port if port is not None else settings.SMTP_PORT
        self.user = user if user is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.use_tls = use_tls if use_tls is not None else settings.SMTP_USE_TLS
        self.from_email = from_email or settings.EMAIL_FROM
        self.from_name = from_name or settings.EMAIL_FROM_NAME

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def build_message(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = formataddr((self.from_name, self.from_email))
        message["To"] = to_email
        message["Message-ID"] = make_msgid(domain=self.from_email.split("@")[-1])
        if text_content:
            message.attach(MIMEText(text_content, "plain"))
        message.attach(MIMEText(html_content, "html"))
        return message

    async def send(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> str:
        """
        Send one email. Returns the Message-ID.

        Raises DeliveryFailure on any SMTP or connection error.
        """
        message = self.build_message(to_email, subject, html_content, text_content)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.user,
                password=self.password,
                start_tls=self.use_tls,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"[Email] Failed to send email to {to_email}", error=e)
            raise DeliveryFailure(f"Email delivery failed: {e}") from e

        logger.info(f"[Email] Sent '{subject}' to {to_email}")
        return message["Message-ID"]
