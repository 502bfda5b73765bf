import re

from pydantic import BaseModel, EmailStr, Field, field_validator

NAME_PATTERN = r"^[a-zA-Z\s'-]+$"
PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one number"),
    (re.compile(r"[!@#$%^&*]"), "Password must contain at least one special character (!@#$%^&*)"),
)


class EmailIn(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not 5 <= len(value) <= 100:
            raise ValueError("Email must be between 5 and 100 characters")
        return value


class RegisterIn(EmailIn):
    password: str = Field(min_length=8, max_length=50)
    firstName: str = Field(min_length=1, max_length=50, pattern=NAME_PATTERN)
    lastName: str = Field(min_length=1, max_length=50, pattern=NAME_PATTERN)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        for rule, message in PASSWORD_RULES:
            if not rule.search(value):
                raise ValueError(message)
        return value


class LoginIn(EmailIn):
    password: str = Field(min_length=1)


class ResendOtpIn(EmailIn):
    pass


class VerifyEmailIn(EmailIn):
    otp: str = Field(min_length=6, max_length=6, pattern=r"^\d+$")


class ProfileUpdateIn(BaseModel):
    firstName: str | None = Field(None, min_length=1, max_length=50, pattern=NAME_PATTERN)
    lastName: str | None = Field(None, min_length=1, max_length=50, pattern=NAME_PATTERN)
    imageUrl: str | None = Field(None, max_length=1024)


class UserPublic(BaseModel):
    id: str
    email: EmailStr
    firstName: str
    lastName: str
    imageUrl: str | None = None
    authProvider: str
    isEmailVerified: bool


class MessageOut(BaseModel):
    message: str


class RegisterOut(MessageOut):
    user: UserPublic
    otpSent: bool


class AuthOut(MessageOut):
    user: UserPublic
    token: str


class ProfileOut(MessageOut):
    user: UserPublic
