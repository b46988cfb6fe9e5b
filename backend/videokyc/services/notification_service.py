"""
Notification Service
Emails users about the outcome of their verification call through the
`send-email` edge function.

Templates are rendered locally with Jinja2; the edge function only
delivers the rendered subject and body.

Sending is fire-and-forget: a failed email is logged and never affects
the call flow.
"""
import logging
from typing import Any, Dict, List, Optional

from jinja2 import BaseLoader, Environment
from pydantic import BaseModel, Field
from supabase import AsyncClient

from videokyc.domain.models.call_record import CallRecord, CallStatus, VerificationResult

logger = logging.getLogger(__name__)

SEND_EMAIL_FUNCTION = "send-email"

SIGNATURE = "Thank you,\nTicketSwapper Team"


class EmailTemplate(BaseModel):
    """Single email template definition."""
    name: str = Field(..., description="Template identifier")
    subject_template: str = Field(..., description="Jinja2 subject template")
    body_template: str = Field(..., description="Jinja2 plain text body template")
    variables: List[str] = Field(default_factory=list, description="Variables the template reads")


class RenderedEmail(BaseModel):
    """Rendered email ready for the send-email function."""
    subject: str
    body: str
    template_name: str


EMAIL_TEMPLATES: Dict[str, EmailTemplate] = {
    "kyc_approved": EmailTemplate(
        name="kyc_approved",
        subject_template="Your identity has been verified",
        body_template=(
            "Dear {{ name | default('User', true) }},\n\n"
            "Your video KYC verification was successful. "
            "You can now list and buy tickets.\n\n" + SIGNATURE
        ),
        variables=["name"],
    ),
    "kyc_rejected": EmailTemplate(
        name="kyc_rejected",
        subject_template="Your identity verification was not approved",
        body_template=(
            "Dear {{ name | default('User', true) }},\n\n"
            "We could not verify your identity during the video call.\n\n"
            "Notes from the verifier: {{ notes | default('-', true) }}\n\n"
            "You can request a new call at any time.\n\n" + SIGNATURE
        ),
        variables=["name", "notes"],
    ),
    "kyc_call_rejected": EmailTemplate(
        name="kyc_call_rejected",
        subject_template="Your video KYC call request",
        body_template=(
            "Dear {{ name | default('User', true) }},\n\n"
            "Your video KYC call request could not be taken right now. "
            "Please request a new call later.\n\n" + SIGNATURE
        ),
        variables=["name"],
    ),
}


def template_for(record: CallRecord) -> Optional[str]:
    """Pick the email template for a terminal call record"""
    if record.status == CallStatus.COMPLETED:
        if record.verification_result == VerificationResult.APPROVED:
            return "kyc_approved"
        return "kyc_rejected"
    if record.status == CallStatus.REJECTED:
        return "kyc_call_rejected"
    return None


class NotificationService:
    """Outcome emails for verification calls."""

    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase
        self.templates: Dict[str, EmailTemplate] = dict(EMAIL_TEMPLATES)
        self.env = Environment(loader=BaseLoader())

    def render_email(self, template_name: str, **context: Any) -> RenderedEmail:
        """
        Render an email template with the given context.

        Raises:
            KeyError: If the template is unknown
        """
        if template_name not in self.templates:
            available = ", ".join(self.templates.keys())
            raise KeyError(f"Template '{template_name}' not found. Available: {available}")

        template = self.templates[template_name]
        subject = self.env.from_string(template.subject_template).render(**context)
        body = self.env.from_string(template.body_template).render(**context)

        return RenderedEmail(subject=subject, body=body, template_name=template_name)

    async def send_email(self, to: str, template: str, template_data: Dict[str, Any]) -> bool:
        """
        Invoke the send-email function.

        Returns:
            True if the function accepted the request
        """
        rendered = self.render_email(template, **template_data)
        body = {
            "to": to,
            "template": template,
            "subject": rendered.subject,
            "body": rendered.body,
        }

        try:
            await self.supabase.functions.invoke(SEND_EMAIL_FUNCTION, invoke_options={"body": body})
        except Exception as e:
            logger.error(f"Failed to send {template} email: {e}")
            return False

        logger.info(f"Sent {template} email")
        return True

    async def notify_call_outcome(self, record: CallRecord) -> bool:
        """Decision listener: email the requester about a terminal call"""
        template = template_for(record)
        if template is None:
            return False

        try:
            response = await self.supabase.table("profiles").select(
                "email, full_name"
            ).eq("id", record.requester_id).limit(1).execute()
        except Exception as e:
            logger.error(f"Could not load profile {record.requester_id} for email: {e}")
            return False

        if not response.data or not response.data[0].get("email"):
            logger.warning(f"No email address for requester {record.requester_id}")
            return False

        profile = response.data[0]
        return await self.send_email(
            profile["email"],
            template,
            {"name": profile.get("full_name"), "notes": record.notes},
        )
