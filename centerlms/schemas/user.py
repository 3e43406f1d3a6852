from pydantic import BaseModel, EmailStr, Field


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    full_name: str | None = None
    # mobile-money number, e.g. 2376XXXXXXXX
    phone_number: str | None = Field(default=None, pattern=r"^237[6-7]\d{8}$")


class UserRead(BaseModel):
    id: int
    email: EmailStr
    full_name: str | None = None
    phone_number: str | None = None
    role: str

    class Config:
        from_attributes = True
