import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError as PayloadError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from centerlms.core import config
from centerlms.core.deps import get_db, get_request_notifier
from centerlms.core.errors import SignatureInvalid
from centerlms.core.signatures import verify_webhook_signature
from centerlms.schemas.payment import PaymentNotification, WebhookAck
from centerlms.services import settlement
from centerlms.services.gateway import GatewayPayment
from centerlms.services.notifier import Notifier

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/payment",
    response_model=WebhookAck,
    responses={
        400: {"description": "Missing signature headers or malformed body"},
        403: {"description": "Invalid signature"},
    },
)
async def payment_webhook(
    request: Request,
    x_signature: str | None = Header(default=None),
    x_timestamp: str | None = Header(default=None),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_request_notifier),
):
    if not x_signature or not x_timestamp:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing signature headers",
        )

    # verify against the exact bytes received, before parsing anything
    body = await request.body()
    callback_url = config.PAYMENT_CALLBACK_URL or str(request.url)
    if not verify_webhook_signature(
        config.PAYMENT_WEBHOOK_PUBLIC_KEY, x_timestamp, callback_url, body, x_signature
    ):
        raise SignatureInvalid()

    try:
        data = json.loads(body)
        notification = PaymentNotification.model_validate(data)
    except (ValueError, PayloadError):
        logger.warning("malformed payment webhook body")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Malformed payload",
        )

    payment = GatewayPayment(
        id=notification.id,
        status=notification.status.lower(),
        amount=notification.amount,
        reference=notification.reference,
        raw=data,
    )
    # always acknowledged; the status poll can settle it later
    try:
        outcome = await run_in_threadpool(settlement.settle_payment, db, payment, notifier)
    except Exception:
        logger.exception("settling payment %s failed", payment.id)
        outcome = settlement.ERROR
    return {"received": True, "outcome": outcome}
