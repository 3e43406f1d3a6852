import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from centerlms.core.errors import CenterInUse, CourseNotFound, NotFound, ValidationError
from centerlms.db.transaction import atomic
from centerlms.models.center import Center
from centerlms.models.course import Course
from centerlms.models.enrollment import Enrollment, EnrollmentStatus
from centerlms.schemas.center import CenterCreate

logger = logging.getLogger(__name__)


def get_center(db: Session, center_id: int) -> Center:
    center = db.get(Center, center_id)
    if center is None:
        raise NotFound("Center not found")
    return center


def get_center_course(db: Session, course_id: int) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise CourseNotFound()
    if not course.is_center_based:
        raise ValidationError("Centers can only be added to center-based courses")
    return course


def create_center(db: Session, course_id: int, payload: CenterCreate) -> Center:
    course = get_center_course(db, course_id)
    with atomic(db):
        center = Center(
            course_id=course.id,
            name=payload.name,
            town=payload.town,
            location=payload.location,
            capacity=payload.capacity,
            enrollment_deadline=payload.enrollment_deadline,
            owner_contact=payload.owner_contact,
        )
        db.add(center)
    logger.info("center %s created for course %s (capacity %s)", center.id, course.id, center.capacity)
    return center


def set_center_lock(db: Session, center_id: int, is_locked: bool) -> Center:
    center = get_center(db, center_id)
    with atomic(db):
        center.is_locked = is_locked
    logger.info("center %s %s", center.id, "locked" if is_locked else "unlocked")
    return center


def delete_center(db: Session, center_id: int) -> None:
    center = get_center(db, center_id)
    seated = db.scalars(
        select(Enrollment.id).where(
            Enrollment.center_id == center.id,
            Enrollment.status.in_([EnrollmentStatus.PENDING, EnrollmentStatus.ACTIVE]),
        )
    ).first()
    if seated is not None:
        raise CenterInUse()

    with atomic(db, conflict=CenterInUse):
        # cancelled enrollments keep their history without the center
        db.execute(
            update(Enrollment)
            .where(
                Enrollment.center_id == center.id,
                Enrollment.status == EnrollmentStatus.CANCELLED,
            )
            .values(center_id=None)
            .execution_options(synchronize_session=False)
        )
        db.delete(center)
    logger.info("center %s deleted", center_id)
