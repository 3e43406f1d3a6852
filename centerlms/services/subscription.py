"""Platform access gate: a free trial, then a monthly fee.

Admin and staff accounts never pay. There is no ejection here; users whose
subscription is about to lapse get an in-app notification.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from centerlms.core import config
from centerlms.core.errors import (
    AlreadyActive,
    AlreadyProcessed,
    ValidationError,
)
from centerlms.core.timeutils import as_utc, days_until, format_date, utcnow
from centerlms.db.transaction import atomic
from centerlms.models.notification import SUBSCRIPTION_WARNING, Notification
from centerlms.models.subscription_payment import (
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    SubscriptionPayment,
)
from centerlms.models.user import User
from centerlms.services.enrollments import PHONE_RE
from centerlms.services.gateway import GatewayPayment, PaymentGateway
from centerlms.services.obligations import RecurringObligation, run_sweep

logger = logging.getLogger(__name__)

SUBSCRIPTION_REFERENCE_PREFIX = "MONTHLY_SUB_"


def is_excluded(user: User) -> bool:
    return user.role in config.EXCLUDED_ROLES


def trial_days_remaining(user: User, now: datetime | None = None) -> int:
    if user.trial_started_at is None:
        return 0
    now = now or utcnow()
    trial_end = as_utc(user.trial_started_at) + timedelta(days=config.TRIAL_DAYS)
    return days_until(trial_end, now)


def is_trial_active(user: User, now: datetime | None = None) -> bool:
    return trial_days_remaining(user, now) > 0


def has_active_subscription(user: User, now: datetime | None = None) -> bool:
    if user.monthly_subscription_paid_until is None:
        return False
    now = now or utcnow()
    return as_utc(user.monthly_subscription_paid_until) > as_utc(now)


def needs_to_pay(user: User, now: datetime | None = None) -> bool:
    now = now or utcnow()
    if is_excluded(user):
        return False
    return not is_trial_active(user, now) and not has_active_subscription(user, now)


def subscription_status(user: User, now: datetime | None = None) -> dict:
    now = now or utcnow()
    paid_until = user.monthly_subscription_paid_until
    return {
        "needs_to_pay": needs_to_pay(user, now),
        "is_excluded": is_excluded(user),
        "trial_active": is_trial_active(user, now),
        "trial_days_remaining": trial_days_remaining(user, now),
        "subscription_active": has_active_subscription(user, now),
        "paid_until": as_utc(paid_until),
        "days_remaining": days_until(paid_until, now) if paid_until else 0,
        "amount": config.SUBSCRIPTION_PRICE,
    }


def start_trial(db: Session, user: User, now: datetime | None = None) -> User:
    """Start the free trial once; later calls leave the account unchanged."""
    now = now or utcnow()
    if is_excluded(user) or has_active_subscription(user, now):
        return user
    if user.trial_started_at is not None:
        return user
    with atomic(db):
        user.trial_started_at = now
    logger.info("trial started for user %s", user.id)
    return user


def initiate_subscription_payment(
    db: Session,
    user: User,
    gateway: PaymentGateway,
    phone_number: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    if is_excluded(user):
        raise ValidationError("Your account does not require a subscription")
    if has_active_subscription(user, now):
        raise AlreadyActive("Subscription is already active")

    phone = phone_number or user.phone_number
    if not phone or not PHONE_RE.match(phone):
        raise ValidationError("Invalid phone number. Format: 237XXXXXXXXX (Cameroon)")

    reference = f"{SUBSCRIPTION_REFERENCE_PREFIX}{user.id}_{int(now.timestamp() * 1000)}"
    payment = gateway.collect(
        amount=config.SUBSCRIPTION_PRICE,
        phone_number=phone,
        reference=reference,
        description="Monthly platform subscription",
    )

    with atomic(db):
        record = SubscriptionPayment(
            user_id=user.id,
            amount=config.SUBSCRIPTION_PRICE,
            payment_reference=reference,
            transaction_id=payment.id,
            status=PAYMENT_PENDING,
            raw_response=payment.raw,
        )
        db.add(record)

    logger.info("subscription payment %s initiated for user %s", payment.id, user.id)
    return {
        "payment_id": payment.id,
        "reference": reference,
        "payment_link": payment.payment_link,
    }


def find_subscription_payment(
    db: Session, payment_id: str, reference: str | None
) -> SubscriptionPayment | None:
    record = db.scalars(
        select(SubscriptionPayment).where(SubscriptionPayment.transaction_id == payment_id)
    ).first()
    if record is None and reference:
        record = db.scalars(
            select(SubscriptionPayment).where(
                SubscriptionPayment.payment_reference == reference
            )
        ).first()
    return record


def _close_payment(db: Session, record: SubscriptionPayment, status: str, **values) -> None:
    result = db.execute(
        update(SubscriptionPayment)
        .where(
            SubscriptionPayment.id == record.id,
            SubscriptionPayment.status == PAYMENT_PENDING,
        )
        .values(status=status, **values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(record)
    if result.rowcount != 1:
        raise AlreadyProcessed()


def apply_subscription_payment(
    db: Session,
    record: SubscriptionPayment,
    payment: GatewayPayment,
    now: datetime,
) -> str:
    """Apply a gateway outcome to a pending fee payment. Does not commit."""
    if payment.status == "success":
        _close_payment(db, record, PAYMENT_PAID, paid_at=now, raw_response=payment.raw)
        user = record.user
        current = as_utc(user.monthly_subscription_paid_until)
        start = max(current, as_utc(now)) if current is not None else as_utc(now)
        user.monthly_subscription_paid_until = start + config.SUBSCRIPTION_PERIOD
        logger.info(
            "subscription for user %s paid until %s",
            user.id,
            user.monthly_subscription_paid_until.isoformat(),
        )
        return "subscription_paid"

    if payment.status in ("failed", "canceled", "cancelled"):
        _close_payment(db, record, PAYMENT_FAILED, raw_response=payment.raw)
        logger.info("subscription payment %s failed", payment.id)
        return "subscription_failed"

    record.raw_response = payment.raw
    return "recorded"


class SubscriptionWarning(RecurringObligation):
    name = "subscription-warning"
    model = User

    def candidates(self, now: datetime):
        horizon = now + timedelta(days=config.SUBSCRIPTION_WARNING_DAYS)
        return (
            select(User.id)
            .where(
                User.role.not_in(config.EXCLUDED_ROLES),
                User.monthly_subscription_paid_until.is_not(None),
                User.monthly_subscription_paid_until >= now,
                User.monthly_subscription_paid_until <= horizon,
            )
            .order_by(User.id.asc())
        )

    def apply(self, db: Session, user: User, now: datetime) -> bool:
        if is_excluded(user) or user.monthly_subscription_paid_until is None:
            return False
        paid_until = as_utc(user.monthly_subscription_paid_until)
        window_start = paid_until - timedelta(days=config.SUBSCRIPTION_WARNING_DAYS)
        if not window_start <= now <= paid_until:
            return False

        already_warned = db.scalars(
            select(Notification.id).where(
                Notification.user_id == user.id,
                Notification.type == SUBSCRIPTION_WARNING,
                Notification.created_at >= window_start,
            )
        ).first()
        if already_warned is not None:
            return False

        days = days_until(paid_until, now)
        db.add(
            Notification(
                user_id=user.id,
                type=SUBSCRIPTION_WARNING,
                title="Subscription expiring soon",
                message=(
                    f"Your monthly subscription expires in {days} day(s), on "
                    f"{format_date(paid_until)}. Pay {config.CURRENCY} "
                    f"{config.SUBSCRIPTION_PRICE} to keep access."
                ),
                days_remaining=days,
                amount_due=config.SUBSCRIPTION_PRICE,
                created_at=now,
            )
        )
        return True


def run_subscription_warnings(db: Session, now: datetime | None = None) -> int:
    now = as_utc(now) if now is not None else utcnow()
    return run_sweep(db, SubscriptionWarning(), now).processed
