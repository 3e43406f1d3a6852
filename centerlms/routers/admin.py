from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from centerlms.core.deps import get_db, get_request_notifier
from centerlms.core.permissions import require_admin
from centerlms.core.rate_limit import ADMIN_LIMIT, limiter
from centerlms.core.timeutils import format_date
from centerlms.models.user import User
from centerlms.schemas.enrollment import CenterOverride, EnrollmentOut, ManualPayment
from centerlms.services import enrollments
from centerlms.services.notifier import NoticeKind, Notifier

router = APIRouter()


@router.post("/enrollments/{enrollment_id}/unlock", response_model=EnrollmentOut)
@limiter.limit(ADMIN_LIMIT)
def unlock_enrollment(
    request: Request,
    enrollment_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return enrollments.unlock_enrollment(db, enrollment_id)


@router.post("/enrollments/{enrollment_id}/block", response_model=EnrollmentOut)
@limiter.limit(ADMIN_LIMIT)
def block_enrollment(
    request: Request,
    enrollment_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return enrollments.block_enrollment(db, enrollment_id)


@router.post("/enrollments/{enrollment_id}/center", response_model=EnrollmentOut)
@limiter.limit(ADMIN_LIMIT)
def override_center(
    request: Request,
    enrollment_id: str,
    payload: CenterOverride,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return enrollments.override_center(db, enrollment_id, payload.center_id)


@router.post("/enrollments/{enrollment_id}/manual-payment", response_model=EnrollmentOut)
@limiter.limit(ADMIN_LIMIT)
def record_manual_payment(
    request: Request,
    enrollment_id: str,
    payload: ManualPayment,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    notifier: Notifier = Depends(get_request_notifier),
):
    enrollment = enrollments.record_manual_payment(db, enrollment_id, payload.amount)
    notifier.send(
        NoticeKind.RECEIPT,
        enrollment.user.email,
        enrollments.notice_payload(
            enrollment,
            transaction_id=f"MANUAL-{enrollment.id[:8]}",
            paid_at=format_date(enrollment.paid_at),
        ),
    )
    return enrollment
