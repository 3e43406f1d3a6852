"""Apply payment-gateway outcomes to enrollments and subscription payments.

The same notification can arrive more than once, late, or out of order (the
webhook and the client's status poll race each other). Every path below is
safe to repeat: the gateway payment id recorded on the enrollment together
with the enrollment's status decide whether there is anything left to do.
Callers always get an outcome string back; nothing here turns a business
result into an HTTP error.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from centerlms.core.errors import AlreadyProcessed, CapacityExceeded, NotFound, UpstreamPaymentError
from centerlms.core.timeutils import as_utc, format_date, utcnow
from centerlms.db.transaction import atomic
from centerlms.models.enrollment import Enrollment, EnrollmentStatus
from centerlms.models.user import User
from centerlms.services import enrollments, subscription
from centerlms.services.gateway import GatewayPayment, PaymentGateway
from centerlms.services.notifier import NoticeKind, Notifier

logger = logging.getLogger(__name__)

ACTIVATED = "activated"
RENEWED = "renewed"
CANCELLED = "cancelled"
RECORDED = "recorded"
ALREADY_PROCESSED = "already_processed"
UNMATCHED = "unmatched"
IGNORED = "ignored"
REFUND_REQUIRED = "refund_required"
ERROR = "error"

FAILED_STATUSES = ("failed", "canceled", "cancelled")

ENROLLMENT_PREFIXES = (
    enrollments.CENTER_REFERENCE_PREFIX,
    enrollments.COURSE_REFERENCE_PREFIX,
)


def find_enrollment_for_payment(
    db: Session, payment_id: str, reference: str | None
) -> Enrollment | None:
    enrollment = db.scalars(
        select(Enrollment).where(Enrollment.transaction_id == payment_id)
    ).first()
    if enrollment is None and reference:
        enrollment = db.scalars(
            select(Enrollment).where(Enrollment.payment_reference == reference)
        ).first()
    return enrollment


def settle_payment(
    db: Session,
    payment: GatewayPayment,
    notifier: Notifier,
    now: datetime | None = None,
) -> str:
    now = as_utc(now) if now is not None else utcnow()
    reference = payment.reference or ""

    if reference.startswith(subscription.SUBSCRIPTION_REFERENCE_PREFIX):
        return _settle_subscription(db, payment, now)
    if reference.startswith(ENROLLMENT_PREFIXES):
        return _settle_enrollment(db, payment, notifier, now)

    logger.info("payment %s with reference %r is not ours; ignored", payment.id, reference)
    return IGNORED


def _settle_enrollment(
    db: Session, payment: GatewayPayment, notifier: Notifier, now: datetime
) -> str:
    enrollment = find_enrollment_for_payment(db, payment.id, payment.reference)
    if enrollment is None:
        logger.warning(
            "no enrollment for payment %s (reference %s)", payment.id, payment.reference
        )
        return UNMATCHED

    try:
        if payment.status == "success":
            outcome = _apply_success(db, enrollment, payment, now)
        elif payment.status in FAILED_STATUSES:
            with atomic(db):
                enrollments.cancel_on_failure(db, enrollment)
                enrollment.raw_response = payment.raw
            outcome = CANCELLED
        else:
            with atomic(db):
                enrollment.raw_response = payment.raw
            outcome = RECORDED
    except AlreadyProcessed as e:
        logger.info("payment %s for enrollment %s: %s", payment.id, enrollment.id, e.detail)
        return ALREADY_PROCESSED
    except CapacityExceeded:
        # paid after the seat was given away and the center has filled up
        logger.error(
            "payment %s for enrollment %s could not be placed: center %s is full; refund required",
            payment.id,
            enrollment.id,
            enrollment.center_id,
        )
        with atomic(db):
            enrollment.raw_response = payment.raw
        return REFUND_REQUIRED

    logger.info("payment %s: enrollment %s %s", payment.id, enrollment.id, outcome)
    if outcome in (ACTIVATED, RENEWED):
        _send_payment_notices(enrollment, payment, notifier, outcome)
    return outcome


def _apply_success(
    db: Session, enrollment: Enrollment, payment: GatewayPayment, now: datetime
) -> str:
    """Activate a pending or lapsed enrollment, or renew an Active one.

    Only a repeat of the same payment id is a no-op. A success carrying a new
    payment id for an Active center enrollment is a further period paid, so
    it moves the due date and credits the center again.
    """
    with atomic(db):
        enrollments.mark_settled(db, enrollment, payment.id)
        if enrollment.status == EnrollmentStatus.ACTIVE:
            enrollments.renew(db, enrollment, now)
            outcome = RENEWED
        else:
            enrollments.activate(db, enrollment, now)
            outcome = ACTIVATED
        if enrollment.transaction_id is None:
            enrollment.transaction_id = payment.id
        enrollment.raw_response = payment.raw
    return outcome


def _send_payment_notices(
    enrollment: Enrollment, payment: GatewayPayment, notifier: Notifier, outcome: str
) -> None:
    payload = enrollments.notice_payload(
        enrollment,
        transaction_id=payment.id,
        paid_at=format_date(enrollment.paid_at),
    )
    notifier.send(NoticeKind.RECEIPT, enrollment.user.email, payload)

    center = enrollment.center
    if center is not None and outcome == ACTIVATED:
        notifier.send(NoticeKind.OWNER_NOTICE, center.owner_contact, payload)


def _settle_subscription(db: Session, payment: GatewayPayment, now: datetime) -> str:
    record = subscription.find_subscription_payment(db, payment.id, payment.reference)
    if record is None:
        logger.warning("no subscription payment for %s (%s)", payment.id, payment.reference)
        return UNMATCHED
    try:
        with atomic(db):
            return subscription.apply_subscription_payment(db, record, payment, now)
    except AlreadyProcessed:
        logger.info("subscription payment %s already processed", payment.id)
        return ALREADY_PROCESSED


def poll_payment_status(
    db: Session,
    payment_id: str,
    user: User,
    gateway: PaymentGateway,
    notifier: Notifier,
    now: datetime | None = None,
) -> dict:
    """Current status of the caller's payment, settling it if the webhook is late."""
    enrollment = db.scalars(
        select(Enrollment).where(Enrollment.transaction_id == payment_id)
    ).first()
    if enrollment is None or enrollment.user_id != user.id:
        raise NotFound("Payment not found")

    if enrollment.status == EnrollmentStatus.PENDING:
        try:
            payment = gateway.get_payment(payment_id)
        except UpstreamPaymentError:
            logger.warning("status poll for %s: provider unavailable", payment_id)
        else:
            if not payment.reference:
                payment.reference = enrollment.payment_reference
            settle_payment(db, payment, notifier, now)
            db.refresh(enrollment)

    course = enrollment.course
    return {
        "enrollment_id": enrollment.id,
        "status": enrollment.status.value,
        "course_title": course.title,
        "course_slug": course.slug,
    }
