import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from centerlms.core import config
from centerlms.core.deps import get_db
from centerlms.core.timeutils import utcnow
from centerlms.schemas.billing import BillingCheckResult
from centerlms.services.billing import run_billing_check
from centerlms.services.notifier import Notifier, get_notifier
from centerlms.services.subscription import run_subscription_warnings

logger = logging.getLogger(__name__)

router = APIRouter()


def require_cron_secret(x_cron_secret: str | None = Header(default=None)) -> None:
    if not config.CRON_SECRET:
        logger.error("CRON_SECRET is not configured; refusing scheduled job")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cron is not configured")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, config.CRON_SECRET):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post(
    "/billing-check",
    response_model=BillingCheckResult,
    dependencies=[Depends(require_cron_secret)],
)
def billing_check(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    now = utcnow()
    result = run_billing_check(db, notifier, now)
    result["subscription_warned"] = run_subscription_warnings(db, now)
    logger.info("billing check finished: %s", result)
    return result
