from typing import Literal

from pydantic import BaseModel, Field, model_validator

from centerlms.schemas.center import CenterRead


class CourseCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=1, max_length=255, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: str | None = None
    price: int = Field(default=0, ge=0)
    course_type: Literal["ONLINE", "INFRASTRUCTURE_BASE"] = "ONLINE"

    @model_validator(mode="after")
    def center_courses_are_paid(self):
        if self.course_type == "INFRASTRUCTURE_BASE" and self.price <= 0:
            raise ValueError("Center-based courses cannot be free")
        return self


class CourseRead(BaseModel):
    id: int
    title: str
    slug: str
    description: str | None = None
    price: int
    course_type: str
    instructor_id: int

    class Config:
        from_attributes = True


class CourseDetail(CourseRead):
    is_locked: bool = False
    centers: list[CenterRead] = []
