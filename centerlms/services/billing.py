"""Monthly center fees: warn before the due date, eject after it."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from centerlms.core.config import PAYMENT_WARNING_DAYS, REENROLLMENT_GRACE_DAYS
from centerlms.core.timeutils import as_utc, days_overdue, days_until, format_date, utcnow
from centerlms.models.enrollment import Enrollment, EnrollmentStatus
from centerlms.services import enrollments
from centerlms.services.notifier import NoticeKind, Notifier
from centerlms.services.obligations import RecurringObligation, run_sweep

logger = logging.getLogger(__name__)


def _billable():
    return (
        Enrollment.center_id.is_not(None),
        Enrollment.status == EnrollmentStatus.ACTIVE,
        Enrollment.is_ejected.is_(False),
        Enrollment.next_payment_due.is_not(None),
    )


def _is_billable(enrollment: Enrollment) -> bool:
    return (
        enrollment.center_id is not None
        and enrollment.status == EnrollmentStatus.ACTIVE
        and not enrollment.is_ejected
        and enrollment.next_payment_due is not None
    )


class PaymentWarning(RecurringObligation):
    name = "payment-warning"
    model = Enrollment

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    def candidates(self, now: datetime):
        horizon = now + timedelta(days=PAYMENT_WARNING_DAYS)
        return (
            select(Enrollment.id)
            .where(
                *_billable(),
                Enrollment.warning_email_sent.is_(False),
                Enrollment.next_payment_due >= now,
                Enrollment.next_payment_due <= horizon,
            )
            .order_by(Enrollment.next_payment_due.asc())
        )

    def apply(self, db: Session, enrollment: Enrollment, now: datetime) -> bool:
        if not _is_billable(enrollment) or enrollment.warning_email_sent:
            return False
        due = as_utc(enrollment.next_payment_due)
        if not now <= due <= now + timedelta(days=PAYMENT_WARNING_DAYS):
            return False
        return enrollments.claim_warning(db, enrollment)

    def after_commit(self, enrollment: Enrollment, now: datetime) -> None:
        self.notifier.send(
            NoticeKind.PAYMENT_WARNING,
            enrollment.user.email,
            enrollments.notice_payload(
                enrollment,
                days_remaining=days_until(enrollment.next_payment_due, now),
            ),
        )


class NonPaymentEjection(RecurringObligation):
    name = "non-payment-ejection"
    model = Enrollment

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    def candidates(self, now: datetime):
        return (
            select(Enrollment.id)
            .where(*_billable(), Enrollment.next_payment_due < now)
            .order_by(Enrollment.next_payment_due.asc())
        )

    def apply(self, db: Session, enrollment: Enrollment, now: datetime) -> bool:
        if not _is_billable(enrollment):
            return False
        # strictly overdue: a payment due exactly now is not late yet
        if not as_utc(enrollment.next_payment_due) < now:
            return False
        enrollments.eject(db, enrollment, now, due_before=now)
        logger.info(
            "enrollment %s ejected for non-payment (center %s)",
            enrollment.id,
            enrollment.center_id,
        )
        return True

    def after_commit(self, enrollment: Enrollment, now: datetime) -> None:
        self.notifier.send(
            NoticeKind.EJECTION_NOTICE,
            enrollment.user.email,
            enrollments.notice_payload(
                enrollment,
                days_overdue=days_overdue(enrollment.next_payment_due, now),
                re_enrollment_deadline=format_date(
                    now + timedelta(days=REENROLLMENT_GRACE_DAYS)
                ),
            ),
        )


def run_billing_check(
    db: Session, notifier: Notifier, now: datetime | None = None
) -> dict:
    """One idempotent pass: warnings first, then ejections."""
    now = as_utc(now) if now is not None else utcnow()
    warned = run_sweep(db, PaymentWarning(notifier), now)
    ejected = run_sweep(db, NonPaymentEjection(notifier), now)
    return {
        "warned": warned.processed,
        "ejected": ejected.processed,
        "failed": warned.failed + ejected.failed,
    }
