"""
Tests for supplier notification delivery.
"""
import smtplib
from unittest.mock import MagicMock, patch

import pytest

from app.core.errors import NotificationError
from app.services.notifications import (
    Attachment, LoggingTransport, MailMessage, MailTransport, NotificationService, SMTPTransport,
    get_notification_service, get_transport,
)


class FailingTransport(MailTransport):
    @property
    def name(self) -> str:
        return "failing"

    def send(self, message: MailMessage) -> None:
        raise NotificationError("connection refused")


def _message():
    return MailMessage(to="quotes@acme.test", subject="RFQ", body="Please quote")


class TestNotificationService:
    """Delivery goes through the injected transport only."""

    def test_primary_transport_used(self):
        transport = LoggingTransport()
        assert NotificationService(transport).send(_message()) == "log"
        assert transport.sent[0].to == "quotes@acme.test"

    def test_failure_propagates_without_fallback(self):
        with pytest.raises(NotificationError):
            NotificationService(FailingTransport()).send(_message())

    def test_fallback_only_when_injected(self):
        fallback = LoggingTransport()
        assert NotificationService(FailingTransport(), fallback=fallback).send(_message()) == "log"
        assert len(fallback.sent) == 1

    def test_invitation_attaches_workbook(self, tmp_path):
        path = tmp_path / "rfq.xlsx"
        path.write_bytes(b"xlsx-bytes")
        transport = LoggingTransport()

        NotificationService(transport).send_rfq_invitation(
            to="quotes@acme.test",
            supplier_name="Acme Ltd",
            rfq_title="Fasteners",
            rfq_number="RFQ-20260101-ABC123",
            due_date="2026-11-30",
            workbook_path=str(path),
            filename="RFQ_RFQ-20260101-ABC123_SUP-1.xlsx",
        )

        message = transport.sent[0]
        assert message.subject == "Request for Quotation: Fasteners (RFQ-20260101-ABC123)"
        assert "Dear Acme Ltd" in message.body
        assert "2026-11-30" in message.body
        assert message.attachments[0].read() == b"xlsx-bytes"


class TestAttachment:
    def test_content_wins_over_path(self):
        assert Attachment(filename="a.xlsx", content=b"abc", path="/nonexistent").read() == b"abc"

    def test_missing_content(self):
        with pytest.raises(NotificationError):
            Attachment(filename="a.xlsx").read()


class TestSMTPTransport:
    """SMTP errors surface as NotificationError."""

    def _transport(self):
        return SMTPTransport(host="smtp.test", port=587, sender="rfq@quotedesk.local",
                             username="user", password="pass")

    @patch("app.services.notifications.smtplib.SMTP")
    def test_sends_with_tls_and_login(self, mock_smtp):
        client = MagicMock()
        mock_smtp.return_value.__enter__.return_value = client

        message = _message()
        message.attachments.append(Attachment(
            filename="rfq.xlsx", content=b"x",
            content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        ))
        self._transport().send(message)

        client.starttls.assert_called_once()
        client.login.assert_called_once_with("user", "pass")
        sent = client.send_message.call_args[0][0]
        assert sent["To"] == "quotes@acme.test"
        assert sent["From"] == "rfq@quotedesk.local"

    @patch("app.services.notifications.smtplib.SMTP")
    def test_connection_error(self, mock_smtp):
        mock_smtp.side_effect = ConnectionRefusedError("refused")
        with pytest.raises(NotificationError):
            self._transport().send(_message())

    @patch("app.services.notifications.smtplib.SMTP")
    def test_smtp_error(self, mock_smtp):
        client = MagicMock()
        client.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
        mock_smtp.return_value.__enter__.return_value = client
        with pytest.raises(NotificationError):
            self._transport().send(_message())


class TestWiring:
    def test_log_transport_from_settings(self):
        assert isinstance(get_transport(), LoggingTransport)

    @patch("app.services.notifications.settings")
    def test_smtp_with_fallback(self, mock_settings):
        mock_settings.MAIL_TRANSPORT = "smtp"
        mock_settings.MAIL_FALLBACK_TO_LOG = True
        mock_settings.SMTP_PORT = 25
        service = get_notification_service()
        assert isinstance(service.transport, SMTPTransport)
        assert isinstance(service.fallback, LoggingTransport)

    @patch("app.services.notifications.settings")
    def test_no_fallback_by_default(self, mock_settings):
        mock_settings.MAIL_TRANSPORT = "smtp"
        mock_settings.MAIL_FALLBACK_TO_LOG = False
        assert get_notification_service().fallback is None
