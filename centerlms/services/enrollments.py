"""Enrollment lifecycle: Pending -> Active -> Cancelled, plus ejection.

Public functions own their transaction (``atomic``) and commit. The
lower-level transitions (``activate``, ``renew``, ``cancel_on_failure``,
``eject``) only mutate the session so that settlement and the billing sweep
can combine them with other writes in one commit.
"""

import logging
import re
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from centerlms.core.config import (
    BILLING_PERIOD,
    PAYMENT_WARNING_DAYS,
    REENROLLMENT_GRACE_DAYS,
)
from centerlms.core.errors import (
    AlreadyActive,
    AlreadyEnrolled,
    AlreadyProcessed,
    CourseNotFound,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from centerlms.core.timeutils import as_utc, format_date, utcnow
from centerlms.db.transaction import atomic
from centerlms.models.center import Center
from centerlms.models.course import Course
from centerlms.models.enrollment import Enrollment, EnrollmentStatus
from centerlms.models.user import User
from centerlms.services import capacity
from centerlms.services.gateway import PaymentGateway
from centerlms.services.notifier import pay_url

logger = logging.getLogger(__name__)

CENTER_REFERENCE_PREFIX = "INFRASTRUCTURE_BASED_"
COURSE_REFERENCE_PREFIX = "COURSE_"
PROVIDER = "nkwa"

PHONE_RE = re.compile(r"^237[6-7]\d{8}$")


def next_payment_due_from(start: datetime) -> datetime:
    return as_utc(start) + BILLING_PERIOD


def get_enrollment(db: Session, enrollment_id: str) -> Enrollment:
    enrollment = db.get(Enrollment, enrollment_id)
    if enrollment is None:
        raise NotFound("Enrollment not found")
    return enrollment


def find_enrollment(db: Session, user_id: int, course_id: int) -> Enrollment | None:
    return db.scalars(
        select(Enrollment).where(
            Enrollment.user_id == user_id,
            Enrollment.course_id == course_id,
        )
    ).first()


def can_user_reenroll(enrollment: Enrollment, now: datetime | None = None) -> bool:
    """Ejected students may pay back in during the grace window."""
    if not enrollment.is_ejected or enrollment.ejected_at is None:
        return False
    now = now or utcnow()
    return as_utc(now) - as_utc(enrollment.ejected_at) < timedelta(days=REENROLLMENT_GRACE_DAYS)


def notice_payload(enrollment: Enrollment, **extra) -> dict:
    """Template values shared by every email about ``enrollment``."""
    user = enrollment.user
    center = enrollment.center
    payload = {
        "student_name": user.full_name or user.email,
        "student_email": user.email,
        "course_name": enrollment.course.title,
        "center_name": center.name if center is not None else "",
        "amount": enrollment.amount,
        "next_payment_due": format_date(enrollment.next_payment_due),
        "pay_url": pay_url(enrollment.id),
    }
    payload.update(extra)
    return payload


# ---------- transitions (no commit) ----------
#
# Each transition starts with a conditional UPDATE on the enrollment row, so
# two deliveries of the same callback (or two overlapping sweeps) cannot both
# pass the status check. The row is refreshed afterwards.


def _transition(db: Session, enrollment_id: str, *criteria, **values) -> bool:
    result = db.execute(
        update(Enrollment)
        .where(Enrollment.id == enrollment_id, *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_settled(db: Session, enrollment: Enrollment, payment_id: str) -> None:
    """Record ``payment_id`` as applied, or raise AlreadyProcessed if it already was."""
    claimed = _transition(
        db,
        enrollment.id,
        or_(
            Enrollment.settled_transaction_id.is_(None),
            Enrollment.settled_transaction_id != payment_id,
        ),
        settled_transaction_id=payment_id,
    )
    db.refresh(enrollment)
    if not claimed:
        raise AlreadyProcessed()


def activate(db: Session, enrollment: Enrollment, now: datetime) -> None:
    """Pending (or lapsed) -> Active on confirmed payment; credits the center once."""
    if enrollment.status == EnrollmentStatus.ACTIVE:
        raise AlreadyProcessed()

    if enrollment.center_id is not None and not enrollment.holds_seat:
        # late payment after a failure or ejection: the seat was given back
        capacity.reserve_seat(db, enrollment.center_id, now, respect_locks=False)

    enrollment.status = EnrollmentStatus.ACTIVE
    enrollment.paid_at = now
    enrollment.is_ejected = False
    enrollment.ejected_at = None
    enrollment.warning_email_sent = False
    if enrollment.center_id is not None:
        enrollment.next_payment_due = next_payment_due_from(now)
        capacity.credit_earnings(db, enrollment.center_id, enrollment.amount)


def renew(db: Session, enrollment: Enrollment, now: datetime) -> None:
    """A further period paid on an already Active center enrollment.

    Each call credits the center again; callers reach it only for a payment id
    not yet settled on this enrollment (see ``mark_settled``).
    """
    if enrollment.status != EnrollmentStatus.ACTIVE or enrollment.center_id is None:
        raise AlreadyProcessed()

    due = as_utc(enrollment.next_payment_due) or as_utc(now)
    enrollment.next_payment_due = max(due, as_utc(now)) + BILLING_PERIOD
    enrollment.paid_at = now
    enrollment.warning_email_sent = False
    capacity.credit_earnings(db, enrollment.center_id, enrollment.amount)


def cancel_on_failure(db: Session, enrollment: Enrollment) -> None:
    """Pending -> Cancelled when the gateway reports failure; frees the held seat."""
    cancelled = _transition(
        db,
        enrollment.id,
        Enrollment.status == EnrollmentStatus.PENDING,
        status=EnrollmentStatus.CANCELLED,
    )
    if cancelled and enrollment.center_id is not None:
        capacity.release_seat(db, enrollment.center_id)
    db.refresh(enrollment)

    if not cancelled:
        if enrollment.status == EnrollmentStatus.ACTIVE:
            # a failed renewal attempt does not end a paid-up enrollment
            raise AlreadyProcessed("Enrollment is active; failed renewal ignored")
        raise AlreadyProcessed()


def eject(
    db: Session, enrollment: Enrollment, now: datetime, due_before: datetime | None = None
) -> None:
    """Force to Cancelled for non-payment (or admin block) and free the seat.

    With ``due_before`` the row must still be Active, not ejected and due
    strictly before that instant when the UPDATE runs; a renewal committed
    after the row was read makes this raise AlreadyProcessed.
    """
    center_id = enrollment.center_id
    if due_before is not None:
        criteria = (
            Enrollment.status == EnrollmentStatus.ACTIVE,
            Enrollment.is_ejected.is_(False),
            Enrollment.next_payment_due < due_before,
        )
    else:
        criteria = (
            Enrollment.status.in_([EnrollmentStatus.PENDING, EnrollmentStatus.ACTIVE]),
        )
    released = _transition(
        db,
        enrollment.id,
        *criteria,
        status=EnrollmentStatus.CANCELLED,
        is_ejected=True,
        ejected_at=now,
        ejection_count=Enrollment.ejection_count + 1,
    )
    if released:
        if center_id is not None:
            capacity.release_seat(db, center_id)
    elif due_before is not None:
        db.refresh(enrollment)
        raise AlreadyProcessed("Enrollment is no longer overdue")
    elif not _transition(
        db,
        enrollment.id,
        Enrollment.is_ejected.is_(False),
        is_ejected=True,
        ejected_at=now,
        ejection_count=Enrollment.ejection_count + 1,
    ):
        db.refresh(enrollment)
        raise AlreadyProcessed("Enrollment is already ejected")
    db.refresh(enrollment)


def claim_warning(db: Session, enrollment: Enrollment) -> bool:
    """Set ``warning_email_sent``; False if another run already set it."""
    claimed = _transition(
        db,
        enrollment.id,
        Enrollment.warning_email_sent.is_(False),
        warning_email_sent=True,
    )
    db.refresh(enrollment)
    return claimed


# ---------- student actions ----------


def claim_seat(
    db: Session,
    course_id: int,
    center_id: int,
    user: User,
    now: datetime | None = None,
) -> Enrollment:
    """Hold a seat at a center as a Pending enrollment awaiting payment."""
    now = now or utcnow()

    course = db.get(Course, course_id)
    if course is None:
        raise CourseNotFound()
    if not course.is_center_based:
        raise ValidationError("This is not a center-based course")

    center = db.get(Center, center_id)
    if center is None or center.course_id != course.id:
        raise NotFound("Center not found")

    existing = find_enrollment(db, user.id, course.id)
    if existing is not None and existing.status == EnrollmentStatus.ACTIVE:
        raise AlreadyEnrolled()
    if (
        existing is not None
        and existing.center_id is not None
        and existing.center_id != center_id
    ):
        raise ValidationError(
            "Your learning center is locked for this course; contact an administrator to change it"
        )

    with atomic(db, conflict=AlreadyEnrolled):
        if existing is None:
            capacity.reserve_seat(db, center_id, now)
            enrollment = Enrollment(user_id=user.id, course_id=course.id, center_id=center_id)
            db.add(enrollment)
        elif existing.holds_seat:
            # repeated claim while still Pending keeps the seat it already has
            enrollment = existing
        else:
            enrollment = existing
            reopened = _transition(
                db,
                enrollment.id,
                Enrollment.status == EnrollmentStatus.CANCELLED,
                status=EnrollmentStatus.PENDING,
                center_id=center_id,
            )
            db.refresh(enrollment)
            if reopened:
                capacity.reserve_seat(db, center_id, now)
            elif enrollment.status == EnrollmentStatus.ACTIVE:
                raise AlreadyEnrolled()

        enrollment.status = EnrollmentStatus.PENDING
        enrollment.amount = course.price
        enrollment.provider = PROVIDER
        enrollment.next_payment_due = next_payment_due_from(now)
        db.flush()

    logger.info(
        "user %s claimed a seat at center %s (enrollment %s)",
        user.id,
        center_id,
        enrollment.id,
    )
    return enrollment


def start_course_purchase(
    db: Session, course_id: int, user: User
) -> Enrollment:
    """Pending enrollment for an online course; no seat involved."""
    course = db.get(Course, course_id)
    if course is None:
        raise CourseNotFound()
    if course.is_center_based:
        raise ValidationError("Choose a learning center to enroll in this course")
    if course.price <= 0:
        raise ValidationError("This course is not available for enrollment")

    existing = find_enrollment(db, user.id, course.id)
    if existing is not None and existing.status == EnrollmentStatus.ACTIVE:
        raise AlreadyEnrolled()

    with atomic(db, conflict=AlreadyEnrolled):
        enrollment = existing
        if enrollment is None:
            enrollment = Enrollment(user_id=user.id, course_id=course.id)
            db.add(enrollment)
        enrollment.status = EnrollmentStatus.PENDING
        enrollment.amount = course.price
        enrollment.provider = PROVIDER
        db.flush()

    logger.info("user %s started purchase of course %s", user.id, course.id)
    return enrollment


def initiate_payment(
    db: Session,
    enrollment_id: str,
    user: User,
    gateway: PaymentGateway,
    phone_number: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    enrollment = get_enrollment(db, enrollment_id)
    if enrollment.user_id != user.id:
        raise PermissionDenied("Not your enrollment")

    if enrollment.status == EnrollmentStatus.CANCELLED:
        if not can_user_reenroll(enrollment, now):
            raise ValidationError("This enrollment was cancelled; please enroll again")
    elif enrollment.status == EnrollmentStatus.ACTIVE and enrollment.center_id is None:
        raise AlreadyEnrolled()

    phone = phone_number or user.phone_number
    if not phone or not PHONE_RE.match(phone):
        raise ValidationError("Invalid phone number. Format: 237XXXXXXXXX (Cameroon)")

    prefix = CENTER_REFERENCE_PREFIX if enrollment.center_id is not None else COURSE_REFERENCE_PREFIX
    reference = f"{prefix}{enrollment.id[:8]}_{int(now.timestamp() * 1000)}"
    course = enrollment.course
    description = f"Payment for {course.title}"
    if enrollment.center is not None:
        description += f" - {enrollment.center.name}"

    payment = gateway.collect(
        amount=enrollment.amount,
        phone_number=phone,
        reference=reference,
        description=description,
    )

    with atomic(db):
        enrollment.transaction_id = payment.id
        enrollment.payment_reference = reference
        enrollment.raw_response = payment.raw

    logger.info("payment %s initiated for enrollment %s", payment.id, enrollment.id)
    return {
        "enrollment_id": enrollment.id,
        "payment_id": payment.id,
        "reference": reference,
        "payment_link": payment.payment_link,
    }


# ---------- admin actions ----------


def unlock_enrollment(
    db: Session, enrollment_id: str, now: datetime | None = None
) -> Enrollment:
    """Reinstate an ejected student without a new payment.

    The seat is taken back (capacity permitting) and the due date moves to
    the warning horizon, so the next sweep warns instead of ejecting again.
    """
    now = now or utcnow()
    enrollment = get_enrollment(db, enrollment_id)
    if not enrollment.is_ejected:
        raise AlreadyActive()

    with atomic(db):
        if enrollment.center_id is not None and not enrollment.holds_seat:
            capacity.reserve_seat(db, enrollment.center_id, now, respect_locks=False)
        enrollment.is_ejected = False
        enrollment.ejected_at = None
        enrollment.status = EnrollmentStatus.ACTIVE
        enrollment.warning_email_sent = False
        if enrollment.center_id is not None:
            horizon = as_utc(now) + timedelta(days=PAYMENT_WARNING_DAYS)
            due = as_utc(enrollment.next_payment_due)
            if due is None or due < horizon:
                enrollment.next_payment_due = horizon

    logger.info("enrollment %s unlocked by admin", enrollment.id)
    return enrollment


def block_enrollment(
    db: Session, enrollment_id: str, now: datetime | None = None
) -> Enrollment:
    now = now or utcnow()
    enrollment = get_enrollment(db, enrollment_id)
    with atomic(db):
        eject(db, enrollment, now)
    logger.info("enrollment %s blocked by admin", enrollment.id)
    return enrollment


def override_center(
    db: Session,
    enrollment_id: str,
    new_center_id: int,
    now: datetime | None = None,
) -> Enrollment:
    """Move a student to another center of the same course in one transaction."""
    now = now or utcnow()
    enrollment = get_enrollment(db, enrollment_id)
    new_center = db.get(Center, new_center_id)
    if new_center is None:
        raise NotFound("Center not found")
    if new_center.course_id != enrollment.course_id:
        raise ValidationError("Center belongs to a different course")
    if enrollment.center_id == new_center_id:
        return enrollment

    old_center_id = enrollment.center_id
    with atomic(db):
        if enrollment.holds_seat:
            # reserve first: a full target aborts before anything changed
            capacity.reserve_seat(db, new_center_id, now, respect_locks=False)
            capacity.release_seat(db, old_center_id)
        enrollment.center_id = new_center_id

    logger.info(
        "enrollment %s moved from center %s to %s", enrollment.id, old_center_id, new_center_id
    )
    return enrollment


def record_manual_payment(
    db: Session,
    enrollment_id: str,
    amount: int,
    now: datetime | None = None,
) -> Enrollment:
    """Cash paid at the center: same effect as a confirmed gateway payment."""
    now = now or utcnow()
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    enrollment = get_enrollment(db, enrollment_id)

    with atomic(db):
        enrollment.amount = amount
        if enrollment.status == EnrollmentStatus.ACTIVE:
            if enrollment.center_id is None:
                raise AlreadyEnrolled()
            renew(db, enrollment, now)
        else:
            activate(db, enrollment, now)

    logger.info("manual payment of %s recorded for enrollment %s", amount, enrollment.id)
    return enrollment
