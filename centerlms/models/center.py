from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from centerlms.db.base_class import Base


class Center(Base):
    """A physical learning location with a fixed number of seats.

    ``current_enrollment`` counts Pending and Active enrollments. It is only
    ever changed through the ledger in ``centerlms.services.capacity``.
    """

    __tablename__ = "centers"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    town: Mapped[str | None] = mapped_column(String(120))
    location: Mapped[str | None] = mapped_column(String(255))

    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    current_enrollment: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enrollment_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    total_earnings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    owner_contact: Mapped[str | None] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_centers_capacity_positive"),
        CheckConstraint(
            "current_enrollment >= 0 AND current_enrollment <= capacity",
            name="ck_centers_enrollment_in_range",
        ),
        CheckConstraint("total_earnings >= 0", name="ck_centers_earnings_non_negative"),
    )

    course = relationship("Course", back_populates="centers")
    # deletes are guarded by the FK (RESTRICT), not by nulling children
    enrollments = relationship("Enrollment", back_populates="center", passive_deletes="all")

    @property
    def spots_remaining(self) -> int:
        return max(0, self.capacity - self.current_enrollment)
