from datetime import datetime

from pydantic import BaseModel


class SubscriptionStatus(BaseModel):
    needs_to_pay: bool
    is_excluded: bool
    trial_active: bool
    trial_days_remaining: int
    subscription_active: bool
    paid_until: datetime | None = None
    days_remaining: int
    amount: int
