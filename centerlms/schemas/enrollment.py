from datetime import datetime

from pydantic import BaseModel, Field

from centerlms.models.enrollment import EnrollmentStatus


class EnrollmentCreate(BaseModel):
    course_id: int


class CenterClaim(BaseModel):
    course_id: int
    center_id: int


class ClaimResponse(BaseModel):
    enrollment_id: str
    status: EnrollmentStatus
    center_id: int | None = None
    next_payment_due: datetime | None = None


class EnrollmentOut(BaseModel):
    id: str
    user_id: int
    course_id: int
    center_id: int | None = None
    status: EnrollmentStatus
    amount: int
    next_payment_due: datetime | None = None
    paid_at: datetime | None = None
    is_ejected: bool
    ejection_count: int
    warning_email_sent: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentRequest(BaseModel):
    phone_number: str | None = Field(default=None, pattern=r"^237[6-7]\d{8}$")


class PaymentInitResponse(BaseModel):
    payment_id: str
    reference: str
    payment_link: str | None = None
    enrollment_id: str | None = None


class PaymentStatusOut(BaseModel):
    enrollment_id: str
    status: EnrollmentStatus
    course_title: str
    course_slug: str


class CenterOverride(BaseModel):
    center_id: int


class ManualPayment(BaseModel):
    amount: int = Field(gt=0)
