"""
Unit Tests for Report Delivery and Email Sending

Tests:
- Attachment naming
- Subject and message templates
- Per-recipient outcomes
- Failure notifications
- SMTP sender configuration handling
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from analytics_reports.delivery import (
    DeliveryReport,
    EmailTemplateId,
    EmailTemplateRenderer,
    RecipientResult,
    ReportArtifact,
    ReportEmailVariables,
    attachment_name,
)
from analytics_reports.email_sender import (
    EmailAttachment,
    EmailConfig,
    EmailMessage,
    SmtpEmailSender,
)
from analytics_reports.models import (
    DeliveryMethod,
    DeliveryOptions,
    DeliveryStatus,
    ExportFormat,
    Recipient,
    ScheduledReport,
    ScheduleFrequency,
)

RUN_DATE = datetime(2025, 1, 20, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def artifact(tmp_path):
    path = tmp_path / "report.csv"
    path.write_bytes(b"Weekly Load\r\n")
    return ReportArtifact(
        format=ExportFormat.CSV,
        file_path=str(path),
        report_id="r1",
        download_url="/api/exports/report.csv",
    )


def make_schedule(*emails, **delivery_kwargs):
    return ScheduledReport(
        schedule_id="s1",
        name="Weekly Load",
        template_id="system-injury-report",
        frequency=ScheduleFrequency.WEEKLY,
        formats=[ExportFormat.CSV],
        created_by="coach-1",
        delivery=DeliveryOptions(
            method=delivery_kwargs.pop("method", DeliveryMethod.EMAIL),
            recipients=[Recipient(email=e, name=e.split("@")[0].title()) for e in emails],
            **delivery_kwargs,
        ),
    )


class TestAttachmentName:
    """Test attachment file naming"""

    def test_default_pattern(self):
        assert attachment_name("Weekly Load", RUN_DATE, ExportFormat.PDF) == "Weekly_Load_2025-01-20.pdf"

    def test_custom_pattern(self):
        name = attachment_name("Weekly Load", RUN_DATE, ExportFormat.EXCEL, "{date}-{name}-{format}")

        assert name == "2025-01-20-Weekly_Load-excel.xlsx"

    def test_unknown_placeholder_falls_back(self):
        assert attachment_name("Load", RUN_DATE, ExportFormat.CSV, "{team}") == "Load_2025-01-20.csv"


class TestEmailTemplates:
    """Test e-mail template rendering"""

    def test_named_template_escapes_html(self):
        renderer = EmailTemplateRenderer()
        variables = ReportEmailVariables(
            report_name="<b>Load</b>", run_date="2025-01-20", formats=["csv"]
        )

        rendered = renderer.render(EmailTemplateId.REPORT_DELIVERY, variables)

        assert "&lt;b&gt;Load&lt;/b&gt;" in rendered.html
        assert "<b>Load</b>" in rendered.text
        assert "CSV" in rendered.text

    def test_user_template_string(self):
        renderer = EmailTemplateRenderer()
        variables = ReportEmailVariables(report_name="Load", run_date="2025-01-20")

        assert renderer.render_string("{{ name }} for {{ date }}", variables) == "Load for 2025-01-20"


class TestDeliveryReport:
    """Test aggregate delivery status"""

    def test_statuses(self):
        ok = RecipientResult("a@x.test", True)
        bad = RecipientResult("b@x.test", False, "rejected")

        assert DeliveryReport.from_results([]).status == DeliveryStatus.NO_RECIPIENTS
        assert DeliveryReport.from_results([ok]).status == DeliveryStatus.DELIVERED
        assert DeliveryReport.from_results([ok, bad]).status == DeliveryStatus.PARTIAL
        assert DeliveryReport.from_results([bad]).status == DeliveryStatus.FAILED
        assert DeliveryReport.from_results([ok, bad]).failed_recipients == ["b@x.test"]


class TestReportDelivery:
    """Test delivery to recipients"""

    @pytest.mark.asyncio
    async def test_default_subject_and_attachment(self, delivery, mock_email_sender, artifact):
        report = await delivery.deliver(make_schedule("anna@club.test"), [artifact], RUN_DATE, "medical")

        message = mock_email_sender.send.call_args.args[0]
        assert report.status == DeliveryStatus.DELIVERED
        assert message.to_addresses == ["anna@club.test"]
        assert message.subject == "Weekly Load - 2025-01-20"
        assert message.attachments[0].filename == "Weekly_Load_2025-01-20.csv"
        assert message.attachments[0].content == b"Weekly Load\r\n"
        assert "Please find your scheduled medical report attached." in message.body_text
        assert "Hello Anna" in message.body_html

    @pytest.mark.asyncio
    async def test_custom_subject_and_message(self, delivery, mock_email_sender, artifact):
        schedule = make_schedule(
            "anna@club.test",
            subject_template="[Club] {{ name }}",
            message_template="Load figures for {{ date }}",
        )

        await delivery.deliver(schedule, [artifact], RUN_DATE)

        message = mock_email_sender.send.call_args.args[0]
        assert message.subject == "[Club] Weekly Load"
        assert "Load figures for 2025-01-20" in message.body_text

    @pytest.mark.asyncio
    async def test_one_failing_recipient(self, delivery, mock_email_sender, artifact):
        mock_email_sender.send.side_effect = [True, False]

        report = await delivery.deliver(
            make_schedule("anna@club.test", "ola@club.test"), [artifact], RUN_DATE
        )

        assert report.status == DeliveryStatus.PARTIAL
        assert report.failed_recipients == ["ola@club.test"]
        assert mock_email_sender.send.await_count == 2

    @pytest.mark.asyncio
    async def test_transport_exception_recorded(self, delivery, mock_email_sender, artifact):
        mock_email_sender.send.side_effect = RuntimeError("connection reset")

        report = await delivery.deliver(make_schedule("anna@club.test"), [artifact], RUN_DATE)

        assert report.status == DeliveryStatus.FAILED
        assert "connection reset" in report.results[0].error

    @pytest.mark.asyncio
    async def test_download_only_sends_nothing(self, delivery, mock_email_sender, artifact):
        schedule = make_schedule("anna@club.test", method=DeliveryMethod.DOWNLOAD)

        report = await delivery.deliver(schedule, [artifact], RUN_DATE)

        assert report.status == DeliveryStatus.NOT_REQUESTED
        mock_email_sender.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_recipients(self, delivery, artifact):
        report = await delivery.deliver(make_schedule(), [artifact], RUN_DATE)

        assert report.status == DeliveryStatus.NO_RECIPIENTS

    @pytest.mark.asyncio
    async def test_missing_artifact_file(self, delivery, artifact):
        artifact.file_path = "/nonexistent/report.csv"

        with pytest.raises(FileNotFoundError):
            await delivery.deliver(make_schedule("anna@club.test"), [artifact], RUN_DATE)

    @pytest.mark.asyncio
    async def test_failure_notification(self, delivery, mock_email_sender):
        report = await delivery.notify_failure(make_schedule("anna@club.test"), "csv: disk full", RUN_DATE)

        message = mock_email_sender.send.call_args.args[0]
        assert report.status == DeliveryStatus.DELIVERED
        assert message.subject == "Scheduled report failed: Weekly Load"
        assert "csv: disk full" in message.body_html


class TestSmtpEmailSender:
    """Test the aiosmtplib backed sender"""

    def _message(self):
        return EmailMessage(
            to_addresses=["anna@club.test"],
            subject="Weekly Load",
            body_html="<p>Hi</p>",
            body_text="Hi",
            attachments=[EmailAttachment("load.csv", b"a,b\r\n", "text/csv")],
        )

    @pytest.mark.asyncio
    async def test_unconfigured_sender_returns_false(self):
        sender = SmtpEmailSender(EmailConfig(smtp_host=None))

        assert await sender.send(self._message()) is False
        assert sender.failed_emails[0]["error"] == "SMTP host not configured"

    @pytest.mark.asyncio
    async def test_sends_with_starttls(self):
        sender = SmtpEmailSender(EmailConfig(
            smtp_host="smtp.club.test", smtp_port=587, from_address="reports@club.test",
            from_name="Club Reports",
        ))

        with patch("analytics_reports.email_sender.aiosmtplib.send", new=AsyncMock()) as send:
            assert await sender.send(self._message()) is True

        mime_message = send.call_args.args[0]
        assert send.call_args.kwargs["start_tls"] is True
        assert send.call_args.kwargs["use_tls"] is False
        assert mime_message["From"] == "Club Reports <reports@club.test>"
        assert sender.get_email_statistics()["total"]["sent"] == 1

    @pytest.mark.asyncio
    async def test_invalid_address_rejected(self):
        sender = SmtpEmailSender(EmailConfig(smtp_host="smtp.club.test"))
        message = self._message()
        message.to_addresses = ["nobody"]

        assert await sender.send(message) is False

    def test_attachment_from_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            EmailAttachment.from_file(str(tmp_path / "missing.pdf"))

    def test_attachment_content_type_from_suffix(self, tmp_path):
        path = tmp_path / "report.xlsx"
        path.write_bytes(b"data")

        attachment = EmailAttachment.from_file(str(path))

        assert attachment.content_type.endswith("spreadsheetml.sheet")
        assert attachment.filename == "report.xlsx"
