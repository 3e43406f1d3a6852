from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from centerlms.core.current_user import get_current_user
from centerlms.core.deps import get_db
from centerlms.core.permissions import require_instructor
from centerlms.models.course import Course
from centerlms.models.user import User
from centerlms.schemas.center import CenterRead
from centerlms.schemas.course import CourseCreate, CourseDetail, CourseRead
from centerlms.services import capacity

router = APIRouter()


@router.get("/", response_model=list[CourseRead])
def list_courses(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return db.query(Course).order_by(Course.id.asc()).all()


@router.post(
    "/",
    response_model=CourseRead,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"description": "Slug already in use"},
    },
)
def create_course(
    payload: CourseCreate,
    db: Session = Depends(get_db),
    instructor: User = Depends(require_instructor),
):
    if db.query(Course).filter(Course.slug == payload.slug).first():
        raise HTTPException(status_code=409, detail="Slug already in use")

    course = Course(
        title=payload.title,
        slug=payload.slug,
        description=payload.description,
        price=payload.price,
        course_type=payload.course_type,
        instructor_id=instructor.id,
    )
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


@router.get("/{slug}", response_model=CourseDetail)
def get_course(
    slug: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    course = db.query(Course).filter(Course.slug == slug).first()
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")

    detail = CourseDetail.model_validate(course)
    if course.is_center_based:
        detail.centers = [
            CenterRead.model_validate(c) for c in capacity.available_centers(db, course.id)
        ]
        detail.is_locked = capacity.is_course_locked(db, course.id)
    return detail
