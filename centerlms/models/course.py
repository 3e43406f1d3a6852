from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from centerlms.db.base_class import Base

COURSE_TYPE_ONLINE = "ONLINE"
COURSE_TYPE_CENTER = "INFRASTRUCTURE_BASE"


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    # XAF; for center-based courses this is the fee per billing period
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    course_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=COURSE_TYPE_ONLINE
    )
    instructor_id: Mapped[int] = mapped_column(nullable=False, index=True)

    enrollments = relationship(
        "Enrollment", back_populates="course", cascade="all, delete-orphan"
    )

    centers = relationship(
        "Center", back_populates="course", cascade="all, delete-orphan"
    )

    @property
    def is_center_based(self) -> bool:
        return self.course_type == COURSE_TYPE_CENTER
