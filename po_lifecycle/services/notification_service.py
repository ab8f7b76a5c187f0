"""
Notification service — template rendering + dispatch via email.

The engine returns LifecycleEvents alongside each committed transition; the
API layer hands them to publish_events through BackgroundTasks. Delivery is
fire-and-forget and never transactional with the state change.
"""

from dataclasses import dataclass, field
from typing import Optional

import structlog

from po_lifecycle.config import settings
from po_lifecycle.services.email_service import OutboundEmail, send_email

logger = structlog.get_logger()


class EventType:
    APPROVAL_REQUESTED = "po_approval_requested"
    APPROVED = "po_approved"
    REJECTED = "po_rejected"
    DISPATCHED = "po_dispatched"
    VENDOR_ACCEPTED = "po_vendor_accepted"
    VENDOR_REJECTED = "po_vendor_rejected"
    PARTIALLY_RECEIVED = "po_partially_received"
    FULLY_RECEIVED = "po_fully_received"


@dataclass
class LifecycleEvent:
    event_type: str
    po_id: str
    po_number: str
    context: dict = field(default_factory=dict)
    recipient_emails: list[str] = field(default_factory=list)
    recipient_user_ids: list[str] = field(default_factory=list)


# ---------- Template registry ----------

TEMPLATES = {
    EventType.APPROVAL_REQUESTED: {
        "subject": "[PO] {po_number} — Your Approval Required",
        "html": (
            "<h2>Approval Required</h2>"
            "<p>Purchase order <strong>{po_number}</strong> requires your approval.</p>"
            "<p><strong>Amount:</strong> {currency} {amount_display}</p>"
        ),
    },
    EventType.APPROVED: {
        "subject": "[PO] {po_number} — Approved",
        "html": (
            "<h2>Purchase Order Approved</h2>"
            "<p>Purchase order <strong>{po_number}</strong> has been "
            "<span style='color:green'>approved</span> by all approvers "
            "and can be sent to the vendor.</p>"
        ),
    },
    EventType.REJECTED: {
        "subject": "[PO] {po_number} — Rejected",
        "html": (
            "<h2>Purchase Order Rejected</h2>"
            "<p>Purchase order <strong>{po_number}</strong> has been "
            "<span style='color:red'>rejected</span>.</p>"
            "<p><strong>Comment:</strong> {comment}</p>"
        ),
    },
    EventType.DISPATCHED: {
        "subject": "Purchase Order {po_number} — Please Review",
        "html": (
            "<h2>New Purchase Order</h2>"
            "<p>You have received purchase order <strong>{po_number}</strong> "
            "for {currency} {amount_display}.</p>"
            "<p><a href='{accept_url}'>Review and accept or reject this order</a></p>"
            "<p>This link can be used once and expires on {expires_at} UTC.</p>"
        ),
    },
    EventType.VENDOR_ACCEPTED: {
        "subject": "[PO] {po_number} — Accepted by Vendor",
        "html": (
            "<h2>Vendor Accepted</h2>"
            "<p>The vendor accepted purchase order <strong>{po_number}</strong>.</p>"
            "<p><strong>Vendor notes:</strong> {vendor_notes}</p>"
        ),
    },
    EventType.VENDOR_REJECTED: {
        "subject": "[PO] {po_number} — Rejected by Vendor",
        "html": (
            "<h2>Vendor Rejected</h2>"
            "<p>The vendor rejected purchase order <strong>{po_number}</strong>.</p>"
            "<p><strong>Vendor notes:</strong> {vendor_notes}</p>"
        ),
    },
    EventType.PARTIALLY_RECEIVED: {
        "subject": "[PO] {po_number} — Goods Partially Received",
        "html": (
            "<h2>Partial Receipt</h2>"
            "<p>GRN <strong>{grn_number}</strong> was posted against "
            "<strong>{po_number}</strong>. Remaining balance: "
            "{currency} {remaining_display}.</p>"
        ),
    },
    EventType.FULLY_RECEIVED: {
        "subject": "[PO] {po_number} — Fully Received",
        "html": (
            "<h2>Purchase Order Fully Received</h2>"
            "<p>All goods on <strong>{po_number}</strong> have been received "
            "(GRN <strong>{grn_number}</strong>).</p>"
            "<p><strong>Received value:</strong> {currency} {amount_display}</p>"
        ),
    },
}


def _format_amount(cents: int) -> str:
    """Convert cents to display string (e.g. 500000 → '5,000.00')."""
    return f"{cents / 100:,.2f}"


def render(event: LifecycleEvent) -> Optional[tuple[str, str]]:
    template = TEMPLATES.get(event.event_type)
    if not template:
        logger.warning("notification_template_not_found", event_type=event.event_type)
        return None

    context = {"po_number": event.po_number, "comment": "", "vendor_notes": ""}
    context.update({k: v for k, v in event.context.items() if v is not None})
    if "amount_cents" in context and "amount_display" not in context:
        context["amount_display"] = _format_amount(context["amount_cents"])
    if "remaining_cents" in context and "remaining_display" not in context:
        context["remaining_display"] = _format_amount(context["remaining_cents"])

    try:
        return template["subject"].format(**context), template["html"].format(**context)
    except KeyError as e:
        logger.error(
            "notification_template_render_error",
            event_type=event.event_type,
            missing_key=str(e),
        )
        return None


async def send_notification(event: LifecycleEvent) -> bool:
    rendered = render(event)
    if rendered is None:
        return False

    emails = list(event.recipient_emails)
    if not emails:
        logger.info(
            "notification_no_recipients",
            event_type=event.event_type,
            po_id=event.po_id,
            recipient_user_ids=event.recipient_user_ids,
        )
        return False

    subject, html = rendered
    result = await send_email(OutboundEmail(to=emails, subject=subject, html=html))
    logger.info(
        "notification_sent",
        event_type=event.event_type,
        po_id=event.po_id,
        recipients=emails,
        success=result,
    )
    return result


async def publish_events(events: list[LifecycleEvent]) -> None:
    """Deliver every event; one failed delivery never stops the others."""
    for event in events:
        try:
            await send_notification(event)
        except Exception as e:
            logger.error(
                "notification_failed",
                event_type=event.event_type,
                po_id=event.po_id,
                error=str(e),
            )


def internal_recipients() -> list[str]:
    return settings.procurement_team_emails
