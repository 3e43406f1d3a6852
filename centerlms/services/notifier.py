"""Outbound notifications (email) to students and center owners.

``Notifier.send`` is best-effort: delivery errors are logged and never reach
the caller, so a failing mail provider cannot undo or block a state change.
"""

import enum
import html
import logging

import resend
from fastapi import BackgroundTasks

from centerlms.core import config

logger = logging.getLogger(__name__)


class NoticeKind(str, enum.Enum):
    OWNER_NOTICE = "OwnerNotice"
    RECEIPT = "Receipt"
    PAYMENT_WARNING = "PaymentWarning"
    EJECTION_NOTICE = "EjectionNotice"


SUBJECTS = {
    NoticeKind.OWNER_NOTICE: "New Enrollment: {student_name} enrolled in {course_name}",
    NoticeKind.RECEIPT: "Payment Receipt: {course_name} - {currency} {amount}",
    NoticeKind.PAYMENT_WARNING: "Payment due in {days_remaining} day(s): {course_name}",
    NoticeKind.EJECTION_NOTICE: "Important: Course Enrollment Suspended - {course_name}",
}

BODIES = {
    NoticeKind.OWNER_NOTICE: (
        "<h2>New Student Enrollment</h2>"
        "<p><strong>Student:</strong> {student_name} ({student_email})</p>"
        "<p><strong>Course:</strong> {course_name}</p>"
        "<p><strong>Center:</strong> {center_name}</p>"
        "<p><strong>Monthly Fee:</strong> {currency} {amount}</p>"
    ),
    NoticeKind.RECEIPT: (
        "<h2>Payment Receipt</h2>"
        "<p>Hello {student_name}, your payment has been received.</p>"
        "<p><strong>Course:</strong> {course_name}</p>"
        "<p><strong>Center:</strong> {center_name}</p>"
        "<p><strong>Amount Paid:</strong> {currency} {amount}</p>"
        "<p><strong>Transaction ID:</strong> {transaction_id}</p>"
        "<p><strong>Payment Date:</strong> {paid_at}</p>"
        "<p><strong>Next Payment Due:</strong> {next_payment_due}</p>"
        "<p>Your learning center location is locked after enrollment.</p>"
    ),
    NoticeKind.PAYMENT_WARNING: (
        "<h2>Payment Reminder</h2>"
        "<p>Hello {student_name}, your monthly payment of {currency} {amount} for "
        "{course_name} at {center_name} is due in {days_remaining} day(s), on "
        "{next_payment_due}.</p>"
        '<p><a href="{pay_url}">Pay now</a> to keep your seat.</p>'
    ),
    NoticeKind.EJECTION_NOTICE: (
        "<h2>Enrollment Suspended</h2>"
        "<p>Hello {student_name}, your enrollment in {course_name} at {center_name} "
        "has been suspended due to non-payment ({days_overdue} day(s) overdue).</p>"
        "<p>You have until <strong>{re_enrollment_deadline}</strong> to complete "
        "your payment and reclaim your enrollment. After this date your spot may "
        "be given to another student.</p>"
        '<p><a href="{pay_url}">Make Payment Now</a></p>'
    ),
}

SUPPORT_FOOTER = (
    "<hr><p><strong>Need Help?</strong> Email {support_email} and include your "
    "enrollment or transaction ID.</p>"
)


def render(kind: NoticeKind, payload: dict) -> tuple[str, str]:
    values = {"currency": config.CURRENCY, "support_email": config.SUPPORT_EMAIL}
    values.update({k: "" if v is None else v for k, v in payload.items()})
    escaped = {k: html.escape(str(v)) for k, v in values.items()}
    subject = SUBJECTS[kind].format(**values)
    body = BODIES[kind].format(**escaped) + SUPPORT_FOOTER.format(**escaped)
    return subject, body


class Notifier:
    def send(self, kind: NoticeKind, recipient: str | None, payload: dict) -> None:
        if not recipient:
            logger.warning("%s skipped: no recipient", kind.value)
            return
        try:
            self.deliver(kind, recipient, payload)
        except Exception:
            logger.exception("failed to send %s to %s", kind.value, recipient)

    def deliver(self, kind: NoticeKind, recipient: str, payload: dict) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Development fallback when no email provider is configured."""

    def deliver(self, kind: NoticeKind, recipient: str, payload: dict) -> None:
        subject, _ = render(kind, payload)
        logger.info("notification %s to %s: %s", kind.value, recipient, subject)


class EmailNotifier(Notifier):
    def __init__(self, api_key: str, sender: str):
        self.api_key = api_key
        self.sender = sender

    def deliver(self, kind: NoticeKind, recipient: str, payload: dict) -> None:
        subject, body = render(kind, payload)
        resend.api_key = self.api_key
        params = {
            "from": self.sender,
            "to": [recipient],
            "subject": subject,
            "html": body,
        }
        response = resend.Emails.send(params)
        logger.info("sent %s to %s (id %s)", kind.value, recipient, response.get("id"))


class DeferredNotifier(Notifier):
    """Queues sends on the request's BackgroundTasks so they run after the response."""

    def __init__(self, background_tasks: BackgroundTasks, inner: Notifier):
        self.background_tasks = background_tasks
        self.inner = inner

    def send(self, kind: NoticeKind, recipient: str | None, payload: dict) -> None:
        self.background_tasks.add_task(self.inner.send, kind, recipient, payload)


def get_notifier() -> Notifier:
    if config.EMAIL_API_KEY:
        return EmailNotifier(config.EMAIL_API_KEY, config.EMAIL_FROM)
    return LogNotifier()


def pay_url(enrollment_id: str) -> str:
    return f"{config.PUBLIC_BASE_URL}/enrollment/{enrollment_id}/pay"
