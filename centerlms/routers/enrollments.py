from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from centerlms.core.current_user import get_current_user
from centerlms.core.deps import get_db, get_request_notifier
from centerlms.core.rate_limit import CLAIM_LIMIT, PAYMENT_LIMIT, limiter
from centerlms.models.enrollment import Enrollment
from centerlms.models.user import User
from centerlms.schemas.enrollment import (
    CenterClaim,
    ClaimResponse,
    EnrollmentCreate,
    EnrollmentOut,
    PaymentInitResponse,
    PaymentRequest,
    PaymentStatusOut,
)
from centerlms.services import enrollments, settlement
from centerlms.services.gateway import PaymentGateway, get_gateway
from centerlms.services.notifier import Notifier

router = APIRouter()


@router.post(
    "",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"description": "Course not found"},
        409: {"description": "Already enrolled"},
    },
)
@limiter.limit(CLAIM_LIMIT)
def enroll_me(
    request: Request,
    payload: EnrollmentCreate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    return enrollments.start_course_purchase(db, payload.course_id, me)


@router.post(
    "/centers",
    response_model=ClaimResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"description": "Course or center not found"},
        409: {"description": "Already enrolled, or the center is full or locked"},
    },
)
@limiter.limit(CLAIM_LIMIT)
def claim_center_seat(
    request: Request,
    payload: CenterClaim,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    enrollment = enrollments.claim_seat(db, payload.course_id, payload.center_id, me)
    return {
        "enrollment_id": enrollment.id,
        "status": enrollment.status,
        "center_id": enrollment.center_id,
        "next_payment_due": enrollment.next_payment_due,
    }


@router.get("/me", response_model=list[EnrollmentOut])
def my_enrollments(
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    return (
        db.query(Enrollment)
        .filter(Enrollment.user_id == me.id)
        .order_by(Enrollment.created_at.desc())
        .all()
    )


@router.get("/status", response_model=PaymentStatusOut)
def payment_status(
    payment_id: str = Query(alias="paymentId", min_length=1),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_request_notifier),
):
    return settlement.poll_payment_status(db, payment_id, me, gateway, notifier)


@router.post(
    "/{enrollment_id}/pay",
    response_model=PaymentInitResponse,
    responses={
        403: {"description": "Not your enrollment"},
        502: {"description": "Payment provider unavailable"},
    },
)
@limiter.limit(PAYMENT_LIMIT)
def pay_enrollment(
    request: Request,
    enrollment_id: str,
    payload: PaymentRequest | None = None,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway),
):
    phone_number = payload.phone_number if payload else None
    return enrollments.initiate_payment(db, enrollment_id, me, gateway, phone_number)
