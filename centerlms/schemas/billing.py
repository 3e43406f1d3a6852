from pydantic import BaseModel


class BillingCheckResult(BaseModel):
    warned: int
    ejected: int
    failed: int
    subscription_warned: int
