from pydantic import AliasChoices, BaseModel, Field


class PaymentNotification(BaseModel):
    """Body of the gateway's payment callback."""

    id: str = Field(min_length=1)
    status: str
    reference: str | None = Field(
        default=None, validation_alias=AliasChoices("reference", "externalId")
    )
    amount: int | None = None


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
