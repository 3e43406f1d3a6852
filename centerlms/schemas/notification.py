from datetime import datetime

from pydantic import BaseModel


class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    message: str
    days_remaining: int | None = None
    amount_due: int | None = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True
