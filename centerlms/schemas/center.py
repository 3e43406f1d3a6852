from datetime import datetime, timezone

from pydantic import BaseModel, EmailStr, Field, field_validator


class CenterCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    town: str | None = None
    location: str | None = None
    capacity: int = Field(gt=0)
    enrollment_deadline: datetime | None = None
    owner_contact: EmailStr | None = None

    @field_validator("enrollment_deadline")
    @classmethod
    def deadline_in_utc(cls, value: datetime | None) -> datetime | None:
        # stored without an offset, so it must already be UTC
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class CenterLockUpdate(BaseModel):
    is_locked: bool


class CenterRead(BaseModel):
    id: int
    course_id: int
    name: str
    town: str | None = None
    location: str | None = None
    capacity: int
    current_enrollment: int
    spots_remaining: int
    is_locked: bool
    enrollment_deadline: datetime | None = None

    class Config:
        from_attributes = True


class CenterAnalytics(BaseModel):
    center_id: int
    name: str
    town: str | None = None
    capacity: int
    current_enrollment: int
    spots_remaining: int
    status: str
    total_earnings: int
    active_count: int
    pending_count: int
    ejected_count: int
