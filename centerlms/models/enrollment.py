import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from centerlms.db.base_class import Base


class EnrollmentStatus(str, enum.Enum):
    PENDING = "Pending"
    ACTIVE = "Active"
    CANCELLED = "Cancelled"


def _new_id() -> str:
    return str(uuid.uuid4())


class Enrollment(Base):
    __tablename__ = "enrollments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # set once by a successful claim; only the admin override may change it
    center_id: Mapped[int | None] = mapped_column(
        ForeignKey("centers.id", ondelete="RESTRICT"), index=True
    )

    status: Mapped[EnrollmentStatus] = mapped_column(
        Enum(
            EnrollmentStatus,
            name="enrollment_status",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
            length=20,
        ),
        nullable=False,
        default=EnrollmentStatus.PENDING,
        index=True,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    provider: Mapped[str | None] = mapped_column(String(50))
    transaction_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    payment_reference: Mapped[str | None] = mapped_column(String(255), unique=True)
    # gateway id of the last payment whose success was applied
    settled_transaction_id: Mapped[str | None] = mapped_column(String(255))
    raw_response: Mapped[dict | None] = mapped_column(JSON)

    next_payment_due: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), index=True
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    is_ejected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ejection_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    warning_email_sent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
    )

    user = relationship("User", back_populates="enrollments")
    course = relationship("Course", back_populates="enrollments")
    center = relationship("Center", back_populates="enrollments")

    @property
    def holds_seat(self) -> bool:
        return self.center_id is not None and self.status in (
            EnrollmentStatus.PENDING,
            EnrollmentStatus.ACTIVE,
        )
