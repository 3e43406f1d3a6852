from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from centerlms.core.current_user import get_current_user
from centerlms.core.deps import get_db
from centerlms.core.permissions import require_admin
from centerlms.core.rate_limit import ADMIN_LIMIT, limiter
from centerlms.models.center import Center
from centerlms.models.user import User
from centerlms.schemas.center import (
    CenterAnalytics,
    CenterCreate,
    CenterLockUpdate,
    CenterRead,
)
from centerlms.services import capacity, centers

router = APIRouter()


@router.post(
    "/courses/{course_id}/centers",
    response_model=CenterRead,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(ADMIN_LIMIT)
def create_center(
    request: Request,
    course_id: int,
    payload: CenterCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return centers.create_center(db, course_id, payload)


@router.get("/courses/{course_id}/centers", response_model=list[CenterRead])
def list_centers(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    centers.get_center_course(db, course_id)
    return (
        db.query(Center)
        .filter(Center.course_id == course_id)
        .order_by(Center.town.asc(), Center.name.asc(), Center.id.asc())
        .all()
    )


@router.get("/courses/{course_id}/centers/available", response_model=list[CenterRead])
def list_available_centers(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    centers.get_center_course(db, course_id)
    return capacity.available_centers(db, course_id)


@router.get("/courses/{course_id}/centers/analytics", response_model=list[CenterAnalytics])
def centers_analytics(
    course_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    centers.get_center_course(db, course_id)
    rows = db.query(Center).filter(Center.course_id == course_id).order_by(Center.id.asc()).all()
    return [capacity.center_analytics(db, c) for c in rows]


@router.patch("/centers/{center_id}/lock", response_model=CenterRead)
@limiter.limit(ADMIN_LIMIT)
def lock_center(
    request: Request,
    center_id: int,
    payload: CenterLockUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return centers.set_center_lock(db, center_id, payload.is_locked)


@router.delete("/centers/{center_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(ADMIN_LIMIT)
def delete_center(
    request: Request,
    center_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    centers.delete_center(db, center_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
