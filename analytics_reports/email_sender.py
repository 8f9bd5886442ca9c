"""
Email Sender

SMTP delivery of report e-mails with attachments. The EmailSender interface
is what the delivery service depends on; SmtpEmailSender implements it over
aiosmtplib.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosmtplib
import structlog

from .models import utc_now

logger = structlog.get_logger()

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".csv": "text/csv",
    ".html": "text/html",
    ".json": "application/json",
    ".txt": "text/plain",
    ".png": "image/png",
}

HISTORY_LIMIT = 1000


@dataclass
class EmailConfig:
    """Email server configuration"""
    smtp_host: Optional[str]
    smtp_port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: Optional[str] = None
    from_name: Optional[str] = None
    use_tls: bool = True
    timeout: float = 30.0

    def validate(self) -> bool:
        if not self.smtp_host:
            return False
        if self.smtp_port not in [25, 465, 587, 2525]:
            logger.warning("unusual_smtp_port", port=self.smtp_port)
        return True

    @classmethod
    def from_settings(cls, settings) -> "EmailConfig":
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            from_address=settings.SMTP_FROM_EMAIL,
            from_name=settings.SMTP_FROM_NAME,
            use_tls=settings.SMTP_USE_TLS,
            timeout=settings.SMTP_TIMEOUT,
        )


@dataclass
class EmailAttachment:
    """Email attachment information"""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_file(
        cls,
        file_path: str,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> "EmailAttachment":
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Attachment file not found: {file_path}")

        if content_type is None:
            content_type = CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")

        return cls(filename=filename or path.name, content=path.read_bytes(), content_type=content_type)


@dataclass
class EmailMessage:
    """Email message container"""
    to_addresses: List[str]
    subject: str
    body_html: str
    body_text: Optional[str] = None
    from_address: Optional[str] = None
    reply_to: Optional[str] = None
    attachments: List[EmailAttachment] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> bool:
        if not self.to_addresses or not self.subject or not self.body_html:
            return False
        for address in self.to_addresses:
            if "@" not in address:
                logger.warning("invalid_email_address", address=address)
                return False
        return True


class EmailSender(ABC):
    """Outbound e-mail capability"""

    @abstractmethod
    async def send(self, message: EmailMessage) -> bool:
        """Send a message; False when the transport rejected it"""


class SmtpEmailSender(EmailSender):
    """EmailSender over aiosmtplib"""

    def __init__(self, config: EmailConfig):
        self.config = config
        self.sent_emails: List[Dict[str, Any]] = []
        self.failed_emails: List[Dict[str, Any]] = []

    async def send(self, message: EmailMessage) -> bool:
        if not self.config.validate():
            logger.error("email_not_configured")
            self._record(self.failed_emails, message, error="SMTP host not configured")
            return False

        if not message.validate():
            logger.error("invalid_email_message", subject=message.subject)
            self._record(self.failed_emails, message, error="Invalid message")
            return False

        mime_message = self._create_mime_message(message)
        implicit_tls = self.config.smtp_port == 465
        try:
            await aiosmtplib.send(
                mime_message,
                hostname=self.config.smtp_host,
                port=self.config.smtp_port,
                username=self.config.username or None,
                password=self.config.password or None,
                use_tls=self.config.use_tls and implicit_tls,
                start_tls=self.config.use_tls and not implicit_tls,
                timeout=self.config.timeout,
                recipients=message.to_addresses,
            )
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
            logger.error("smtp_send_failed", recipients=message.to_addresses, error=str(e))
            self._record(self.failed_emails, message, error=str(e))
            return False

        logger.info("email_sent", recipients=len(message.to_addresses), subject=message.subject)
        self._record(self.sent_emails, message)
        return True

    def _create_mime_message(self, message: EmailMessage) -> MIMEMultipart:
        mime_message = MIMEMultipart("mixed")
        mime_message["To"] = ", ".join(message.to_addresses)
        mime_message["Subject"] = message.subject

        from_address = message.from_address or self.config.from_address
        if from_address:
            if self.config.from_name:
                mime_message["From"] = f"{self.config.from_name} <{from_address}>"
            else:
                mime_message["From"] = from_address
        if message.reply_to:
            mime_message["Reply-To"] = message.reply_to
        for key, value in message.headers.items():
            mime_message[key] = value

        body = MIMEMultipart("alternative")
        if message.body_text:
            body.attach(MIMEText(message.body_text, "plain", "utf-8"))
        body.attach(MIMEText(message.body_html, "html", "utf-8"))
        mime_message.attach(body)

        for attachment in message.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            part = MIMEBase(maintype or "application", subtype or "octet-stream")
            part.set_payload(attachment.content)
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            mime_message.attach(part)

        return mime_message

    def _record(self, history: List[Dict[str, Any]], message: EmailMessage, error: Optional[str] = None):
        record = {
            "timestamp": utc_now().isoformat(),
            "to_addresses": list(message.to_addresses),
            "subject": message.subject,
            "attachments_count": len(message.attachments),
        }
        if error is not None:
            record["error"] = error
        history.append(record)

        # Keep only last 1000 records
        if len(history) > HISTORY_LIMIT:
            del history[:-HISTORY_LIMIT]

    def get_email_statistics(self) -> Dict[str, Any]:
        total_sent = len(self.sent_emails)
        total_failed = len(self.failed_emails)
        attempts = total_sent + total_failed

        cutoff = (utc_now() - timedelta(hours=24)).isoformat()
        recent_sent = sum(1 for e in self.sent_emails if e["timestamp"] >= cutoff)
        recent_failed = sum(1 for e in self.failed_emails if e["timestamp"] >= cutoff)

        return {
            "total": {
                "sent": total_sent,
                "failed": total_failed,
                "success_rate_percent": (total_sent / attempts * 100) if attempts else 0,
            },
            "recent_24h": {"sent": recent_sent, "failed": recent_failed},
            "configuration": {
                "smtp_host": self.config.smtp_host,
                "smtp_port": self.config.smtp_port,
                "use_tls": self.config.use_tls,
            },
        }
