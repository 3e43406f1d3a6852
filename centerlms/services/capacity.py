"""Seat accounting for centers.

Every change to ``Center.current_enrollment`` and ``Center.total_earnings``
goes through this module as a single conditional UPDATE, so the comparison
and the write are one statement and the database's own locking arbitrates
concurrent claims. None of these functions commit: they run inside the
caller's transaction together with the enrollment write they belong to.
"""

import logging
from datetime import datetime

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from centerlms.core.errors import CenterLocked, ValidationError
from centerlms.core.timeutils import as_utc, utcnow
from centerlms.models.center import Center
from centerlms.models.enrollment import Enrollment, EnrollmentStatus

logger = logging.getLogger(__name__)


def _open_for_enrollment(now: datetime):
    return and_(
        Center.is_locked.is_(False),
        Center.current_enrollment < Center.capacity,
        or_(Center.enrollment_deadline.is_(None), Center.enrollment_deadline > now),
    )


def _expire_counters(db: Session, center_id: int) -> None:
    # the UPDATEs bypass the identity map; make loaded centers re-read
    center = db.identity_map.get(identity_key(Center, center_id))
    if center is not None:
        db.expire(center, ["current_enrollment", "total_earnings"])


def center_is_locked(center: Center | None, now: datetime | None = None) -> bool:
    """Manual lock, full, or at or past the enrollment deadline. A missing center is locked."""
    if center is None:
        return True
    now = now or utcnow()
    if center.is_locked:
        return True
    if center.current_enrollment >= center.capacity:
        return True
    deadline = center.enrollment_deadline
    if deadline is not None and as_utc(now) >= as_utc(deadline):
        return True
    return False


def is_locked(db: Session, center_id: int, now: datetime | None = None) -> bool:
    return center_is_locked(db.get(Center, center_id), now)


def reserve_seat(
    db: Session,
    center_id: int,
    now: datetime | None = None,
    respect_locks: bool = True,
) -> None:
    """Take one seat, or raise CenterLocked if the center cannot accept it.

    Admin actions pass ``respect_locks=False``: they may place a student in a
    manually locked or past-deadline center, but never beyond capacity.
    """
    now = now or utcnow()
    if respect_locks:
        guard = _open_for_enrollment(now)
    else:
        guard = Center.current_enrollment < Center.capacity
    result = db.execute(
        update(Center)
        .where(Center.id == center_id, guard)
        .values(current_enrollment=Center.current_enrollment + 1)
        .execution_options(synchronize_session=False)
    )
    _expire_counters(db, center_id)

    if result.rowcount != 1:
        logger.info("seat reservation refused at center %s", center_id)
        raise CenterLocked()

    logger.debug("seat reserved at center %s", center_id)


def release_seat(db: Session, center_id: int) -> None:
    """Give one seat back; the counter never goes below zero."""
    result = db.execute(
        update(Center)
        .where(Center.id == center_id, Center.current_enrollment > 0)
        .values(current_enrollment=Center.current_enrollment - 1)
        .execution_options(synchronize_session=False)
    )
    _expire_counters(db, center_id)

    if result.rowcount != 1:
        logger.warning("release at center %s found no seat to free", center_id)


def credit_earnings(db: Session, center_id: int, amount: int) -> None:
    if amount < 0:
        raise ValidationError("Earnings credit must not be negative")
    db.execute(
        update(Center)
        .where(Center.id == center_id)
        .values(total_earnings=Center.total_earnings + amount)
        .execution_options(synchronize_session=False)
    )
    _expire_counters(db, center_id)


def available_centers(db: Session, course_id: int, now: datetime | None = None) -> list[Center]:
    now = now or utcnow()
    return list(
        db.scalars(
            select(Center)
            .where(Center.course_id == course_id, _open_for_enrollment(now))
            .order_by(Center.town.asc(), Center.name.asc(), Center.id.asc())
        )
    )


def is_course_locked(db: Session, course_id: int, now: datetime | None = None) -> bool:
    """True when the course has centers and none of them accepts students."""
    centers = list(db.scalars(select(Center).where(Center.course_id == course_id)))
    if not centers:
        return False
    return all(center_is_locked(c, now) for c in centers)


def center_status(center: Center, now: datetime | None = None) -> str:
    if center.is_locked:
        return "LOCKED"
    if center.current_enrollment >= center.capacity:
        return "FULL"
    if center_is_locked(center, now):
        return "CLOSED"
    return "OPEN"


def center_analytics(db: Session, center: Center, now: datetime | None = None) -> dict:
    enrollments = list(
        db.scalars(select(Enrollment).where(Enrollment.center_id == center.id))
    )
    active = [
        e for e in enrollments if not e.is_ejected and e.status == EnrollmentStatus.ACTIVE
    ]
    pending = [e for e in enrollments if e.status == EnrollmentStatus.PENDING]
    ejected = [e for e in enrollments if e.is_ejected]

    return {
        "center_id": center.id,
        "name": center.name,
        "town": center.town,
        "capacity": center.capacity,
        "current_enrollment": center.current_enrollment,
        "spots_remaining": center.spots_remaining,
        "status": center_status(center, now),
        "total_earnings": center.total_earnings,
        "active_count": len(active),
        "pending_count": len(pending),
        "ejected_count": len(ejected),
    }
