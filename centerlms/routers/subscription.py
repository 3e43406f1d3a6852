from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from centerlms.core.current_user import get_current_user
from centerlms.core.deps import get_db
from centerlms.core.rate_limit import PAYMENT_LIMIT, limiter
from centerlms.models.user import User
from centerlms.schemas.enrollment import PaymentInitResponse, PaymentRequest
from centerlms.schemas.subscription import SubscriptionStatus
from centerlms.services import subscription
from centerlms.services.gateway import PaymentGateway, get_gateway

router = APIRouter()


@router.post("/trial", response_model=SubscriptionStatus)
def start_trial(
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    subscription.start_trial(db, me)
    return subscription.subscription_status(me)


@router.get("/check", response_model=SubscriptionStatus)
def check_subscription(me: User = Depends(get_current_user)):
    return subscription.subscription_status(me)


@router.post("/pay", response_model=PaymentInitResponse)
@limiter.limit(PAYMENT_LIMIT)
def pay_subscription(
    request: Request,
    payload: PaymentRequest | None = None,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway),
):
    phone_number = payload.phone_number if payload else None
    return subscription.initiate_subscription_payment(db, me, gateway, phone_number)
