"""
Supplier notifications.

Delivery goes through a ``MailTransport`` chosen from settings and injected
into ``NotificationService``. Falling back from SMTP to the logging transport
is an explicit, configured decision (MAIL_FALLBACK_TO_LOG), never a silent
swap of shared state.
"""
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import List, Optional

from app.core.config import settings
from app.core.errors import NotificationError
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Attachment:
    """File attached to a message, given either as bytes or as a path on disk."""
    filename: str
    content: Optional[bytes] = None
    path: Optional[str] = None
    content_type: str = "application/octet-stream"

    def read(self) -> bytes:
        if self.content is not None:
            return self.content
        if self.path is None:
            raise NotificationError(f"Attachment {self.filename} has no content")
        with open(self.path, "rb") as handle:
            return handle.read()


@dataclass
class MailMessage:
    to: str
    subject: str
    body: str
    html: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)


class MailTransport(ABC):
    """Abstract base class for mail delivery."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport identifier used in logs."""
        pass

    @abstractmethod
    def send(self, message: MailMessage) -> None:
        """Deliver one message; raise NotificationError on failure."""
        pass


class LoggingTransport(MailTransport):
    """Writes messages to the log instead of sending them. Used in development and tests."""

    def __init__(self):
        self.sent: List[MailMessage] = []

    @property
    def name(self) -> str:
        return "log"

    def send(self, message: MailMessage) -> None:
        self.sent.append(message)
        logger.info(
            f"Mail (not sent) to {message.to}: '{message.subject}' "
            f"with {len(message.attachments)} attachment(s)"
        )


class SMTPTransport(MailTransport):
    """SMTP delivery with optional STARTTLS and login."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: int = 30,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "smtp"

    def _build(self, message: MailMessage) -> EmailMessage:
        email = EmailMessage()
        email["From"] = self.sender
        email["To"] = message.to
        email["Subject"] = message.subject
        email.set_content(message.body)
        if message.html:
            email.add_alternative(message.html, subtype="html")
        for attachment in message.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            email.add_attachment(
                attachment.read(),
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return email

    def send(self, message: MailMessage) -> None:
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as client:
                if self.use_tls:
                    client.starttls()
                if self.username and self.password:
                    client.login(self.username, self.password)
                client.send_message(self._build(message))
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery to {message.to} failed: {e}") from e


def get_transport() -> MailTransport:
    """Transport configured by MAIL_TRANSPORT."""
    if settings.MAIL_TRANSPORT == "smtp":
        return SMTPTransport(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            sender=settings.MAIL_FROM,
            username=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
            timeout=settings.SMTP_TIMEOUT,
        )
    return LoggingTransport()


class NotificationService:
    """Composes supplier emails and hands them to the injected transport."""

    def __init__(self, transport: MailTransport, fallback: Optional[MailTransport] = None):
        self.transport = transport
        self.fallback = fallback

    def send(self, message: MailMessage) -> str:
        """Deliver a message; returns the name of the transport that delivered it."""
        try:
            self.transport.send(message)
            return self.transport.name
        except NotificationError:
            if self.fallback is None:
                raise
            logger.warning(
                f"Transport '{self.transport.name}' failed for {message.to}; "
                f"delivering through '{self.fallback.name}'"
            )
            self.fallback.send(message)
            return self.fallback.name

    def send_rfq_invitation(
        self,
        to: str,
        supplier_name: str,
        rfq_title: str,
        rfq_number: str,
        due_date: Optional[str],
        workbook_path: str,
        filename: str,
    ) -> str:
        due = f" Responses are due by {due_date}." if due_date else ""
        body = (
            f"Dear {supplier_name},\n\n"
            f"You are invited to quote for '{rfq_title}' ({rfq_number}).{due}\n\n"
            "Please complete the highlighted cells in the attached workbook and upload it "
            f"through the supplier portal at {settings.APP_URL}. Only the most recently "
            "issued workbook is accepted.\n\n"
            "Kind regards,\nProcurement Team"
        )
        message = MailMessage(
            to=to,
            subject=f"Request for Quotation: {rfq_title} ({rfq_number})",
            body=body,
            attachments=[Attachment(
                filename=filename,
                path=workbook_path,
                content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )],
        )
        return self.send(message)


def get_notification_service() -> NotificationService:
    """Service wired from settings. Used as a FastAPI dependency and by workers."""
    fallback = LoggingTransport() if settings.MAIL_FALLBACK_TO_LOG else None
    return NotificationService(get_transport(), fallback=fallback)
