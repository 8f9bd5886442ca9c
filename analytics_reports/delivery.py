"""
Report Delivery

Best-effort e-mail fan-out of generated artifacts to a scheduled report's
recipients, plus failure notifications. E-mail bodies come from named Jinja2
templates rendered with a typed variable set.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from jinja2 import DictLoader, Environment, TemplateError, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

from .email_sender import EmailAttachment, EmailMessage, EmailSender
from .exceptions import DeliveryError
from .models import DeliveryStatus, ExportFormat, Recipient, ScheduledReport

logger = structlog.get_logger()

DEFAULT_ATTACHMENT_NAME = "{name}_{date}.{ext}"

EMAIL_TEMPLATES = {
    "report_delivery.html": """<html>
<body style="font-family: Arial, sans-serif; color: #1F2937;">
    <p>Hello {{ recipient_name or "there" }},</p>
    <p>{{ message }}</p>
    <table style="border-collapse: collapse; margin: 16px 0;">
        <tr><td style="padding: 4px 12px 4px 0; color: #6B7280;">Report</td><td>{{ report_name }}</td></tr>
        <tr><td style="padding: 4px 12px 4px 0; color: #6B7280;">Date</td><td>{{ run_date }}</td></tr>
        <tr><td style="padding: 4px 12px 4px 0; color: #6B7280;">Formats</td><td>{{ formats | join(", ") | upper }}</td></tr>
    </table>
    {% if download_links %}
    <p>Download links:</p>
    <ul>{% for link in download_links %}<li><a href="{{ link }}">{{ link }}</a></li>{% endfor %}</ul>
    {% endif %}
    <p style="color: #6B7280; font-size: 12px;">This is an automated message from Analytics Reports.</p>
</body>
</html>
""",
    "report_delivery.txt": """Hello {{ recipient_name or "there" }},

{{ message }}

Report: {{ report_name }}
Date: {{ run_date }}
Formats: {{ formats | join(", ") | upper }}
{% for link in download_links %}
{{ link }}{% endfor %}
""",
    "report_failure.html": """<html>
<body style="font-family: Arial, sans-serif; color: #1F2937;">
    <p>Hello {{ recipient_name or "there" }},</p>
    <p>The scheduled report <strong>{{ report_name }}</strong> could not be generated on {{ run_date }}.</p>
    <p style="color: #DC2626;">{{ error }}</p>
    <p>The report will be retried at its next scheduled run.</p>
</body>
</html>
""",
    "report_failure.txt": """Hello {{ recipient_name or "there" }},

The scheduled report {{ report_name }} could not be generated on {{ run_date }}.

Error: {{ error }}

The report will be retried at its next scheduled run.
""",
}


class EmailTemplateId(Enum):
    """Named e-mail templates"""
    REPORT_DELIVERY = "report_delivery"
    REPORT_FAILURE = "report_failure"


@dataclass
class ReportEmailVariables:
    """Variables available to e-mail templates"""
    report_name: str
    run_date: str
    report_type: str = "report"
    recipient_name: Optional[str] = None
    formats: List[str] = field(default_factory=list)
    message: str = ""
    error: Optional[str] = None
    download_links: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_name": self.report_name,
            "name": self.report_name,
            "run_date": self.run_date,
            "date": self.run_date,
            "report_type": self.report_type,
            "recipient_name": self.recipient_name,
            "formats": list(self.formats),
            "message": self.message,
            "error": self.error,
            "download_links": list(self.download_links),
        }


@dataclass
class RenderedEmail:
    html: str
    text: str


class EmailTemplateRenderer:
    """Renders named templates and user supplied subject/message templates"""

    def __init__(self):
        self._env = Environment(
            loader=DictLoader(EMAIL_TEMPLATES),
            autoescape=select_autoescape(["html"]),
        )
        self._sandbox = SandboxedEnvironment(autoescape=False)

    def render(self, template_id: EmailTemplateId, variables: ReportEmailVariables) -> RenderedEmail:
        context = variables.to_dict()
        return RenderedEmail(
            html=self._env.get_template(f"{template_id.value}.html").render(**context),
            text=self._env.get_template(f"{template_id.value}.txt").render(**context),
        )

    def render_string(self, source: str, variables: ReportEmailVariables) -> str:
        """Render a user supplied template such as '{{ name }} - {{ date }}'"""
        return self._sandbox.from_string(source).render(**variables.to_dict())


@dataclass
class ReportArtifact:
    """A generated file ready to be attached"""
    format: ExportFormat
    file_path: str
    report_id: str
    download_url: Optional[str] = None


@dataclass
class RecipientResult:
    email: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"email": self.email, "success": self.success, "error": self.error}


@dataclass
class DeliveryReport:
    """Per-recipient outcome of one delivery"""
    status: DeliveryStatus
    results: List[RecipientResult] = field(default_factory=list)

    @property
    def failed_recipients(self) -> List[str]:
        return [r.email for r in self.results if not r.success]

    @classmethod
    def from_results(cls, results: List[RecipientResult]) -> "DeliveryReport":
        if not results:
            return cls(status=DeliveryStatus.NO_RECIPIENTS)
        succeeded = sum(1 for r in results if r.success)
        if succeeded == len(results):
            status = DeliveryStatus.DELIVERED
        elif succeeded:
            status = DeliveryStatus.PARTIAL
        else:
            status = DeliveryStatus.FAILED
        return cls(status=status, results=results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "results": [r.to_dict() for r in self.results],
        }


def attachment_name(
    name: str,
    run_date: datetime,
    export_format: ExportFormat,
    template: Optional[str] = None,
) -> str:
    """File name for an attachment, '{name}_{date}.{ext}' unless overridden"""
    safe_name = re.sub(r"[^\w\-]+", "_", name).strip("_") or "report"
    values = {
        "name": safe_name,
        "date": run_date.strftime("%Y-%m-%d"),
        "ext": export_format.extension,
        "format": export_format.value,
    }
    try:
        file_name = (template or DEFAULT_ATTACHMENT_NAME).format(**values)
    except (KeyError, IndexError, ValueError):
        logger.warning("invalid_attachment_name_template", template=template)
        file_name = DEFAULT_ATTACHMENT_NAME.format(**values)

    if not file_name.endswith(f".{export_format.extension}"):
        file_name = f"{file_name}.{export_format.extension}"
    return file_name


class ReportDelivery:
    """
    Delivers scheduled report artifacts by e-mail.

    Each recipient gets a separate message carrying every artifact. A failure
    for one recipient is recorded and the remaining recipients are still
    attempted.
    """

    def __init__(
        self,
        email_sender: EmailSender,
        template_renderer: Optional[EmailTemplateRenderer] = None,
    ):
        self.email_sender = email_sender
        self.template_renderer = template_renderer or EmailTemplateRenderer()

    async def deliver(
        self,
        scheduled_report: ScheduledReport,
        artifacts: List[ReportArtifact],
        run_date: datetime,
        report_type: str = "report",
    ) -> DeliveryReport:
        delivery = scheduled_report.delivery
        if not delivery.method.includes_email:
            return DeliveryReport(status=DeliveryStatus.NOT_REQUESTED)
        if not delivery.recipients:
            logger.info("delivery_skipped_no_recipients", schedule_id=scheduled_report.schedule_id)
            return DeliveryReport(status=DeliveryStatus.NO_RECIPIENTS)

        attachments = []
        for artifact in artifacts:
            attachments.append(EmailAttachment.from_file(
                artifact.file_path,
                filename=attachment_name(
                    scheduled_report.name, run_date, artifact.format,
                    delivery.attachment_name_template,
                ),
                content_type=artifact.format.content_type,
            ))

        results = []
        for recipient in delivery.recipients:
            variables = ReportEmailVariables(
                report_name=scheduled_report.name,
                run_date=run_date.strftime("%Y-%m-%d"),
                report_type=report_type,
                recipient_name=recipient.name,
                formats=[a.format.value for a in artifacts],
                download_links=[a.download_url for a in artifacts if a.download_url],
            )
            results.append(await self._send_to(
                recipient, variables, attachments,
                EmailTemplateId.REPORT_DELIVERY,
                subject_template=delivery.subject_template,
                message_template=delivery.message_template,
            ))

        report = DeliveryReport.from_results(results)
        logger.info(
            "report_delivered",
            schedule_id=scheduled_report.schedule_id,
            status=report.status.value,
            failed=report.failed_recipients,
        )
        return report

    async def notify_failure(
        self,
        scheduled_report: ScheduledReport,
        error: str,
        run_date: datetime,
    ) -> DeliveryReport:
        """Tell recipients that a scheduled run failed"""
        delivery = scheduled_report.delivery
        if not delivery.method.includes_email:
            return DeliveryReport(status=DeliveryStatus.NOT_REQUESTED)

        results = []
        for recipient in delivery.recipients:
            variables = ReportEmailVariables(
                report_name=scheduled_report.name,
                run_date=run_date.strftime("%Y-%m-%d"),
                recipient_name=recipient.name,
                error=error,
            )
            results.append(await self._send_to(
                recipient, variables, [], EmailTemplateId.REPORT_FAILURE,
                subject=f"Scheduled report failed: {scheduled_report.name}",
            ))
        return DeliveryReport.from_results(results)

    def _subject(self, variables: ReportEmailVariables, subject_template: Optional[str]) -> str:
        if subject_template:
            return self.template_renderer.render_string(subject_template, variables)
        return f"{variables.report_name} - {variables.run_date}"

    def _message(self, variables: ReportEmailVariables, message_template: Optional[str]) -> str:
        if message_template:
            return self.template_renderer.render_string(message_template, variables)
        return f"Please find your scheduled {variables.report_type} report attached."

    async def _send_to(
        self,
        recipient: Recipient,
        variables: ReportEmailVariables,
        attachments: List[EmailAttachment],
        template_id: EmailTemplateId,
        subject: Optional[str] = None,
        subject_template: Optional[str] = None,
        message_template: Optional[str] = None,
    ) -> RecipientResult:
        try:
            variables.message = self._message(variables, message_template)
            rendered = self.template_renderer.render(template_id, variables)
            message = EmailMessage(
                to_addresses=[recipient.email],
                subject=subject or self._subject(variables, subject_template),
                body_html=rendered.html,
                body_text=rendered.text,
                attachments=list(attachments),
            )
            if not await self.email_sender.send(message):
                raise DeliveryError(recipient.email, "message was not accepted by the mail transport")
        except (DeliveryError, TemplateError) as e:
            logger.warning("recipient_delivery_failed", recipient=recipient.email, error=str(e))
            return RecipientResult(email=recipient.email, success=False, error=str(e))
        except Exception as e:
            logger.error("recipient_delivery_error", recipient=recipient.email, error=str(e), exc_info=True)
            error = DeliveryError(recipient.email, str(e))
            return RecipientResult(email=recipient.email, success=False, error=str(error))
        return RecipientResult(email=recipient.email, success=True)
