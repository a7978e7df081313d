"""Signup / OTP request and response bodies. JSON uses camelCase field names."""
from pydantic import BaseModel, Field, field_validator


def _required(value: str | None) -> str:
    s = (value or "").strip()
    if not s:
        raise ValueError("This field is required.")
    return s


class SignupBody(BaseModel):
    email: str
    password: str
    company_name: str = Field(alias="companyName")
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")

    @field_validator("email", "company_name", "first_name", "last_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _required(v)

    @field_validator("password")
    @classmethod
    def password_present(cls, v: str) -> str:
        if not v:
            raise ValueError("Password is required.")
        return v

    class Config:
        populate_by_name = True


class SignupResponse(BaseModel):
    success: bool
    email_sent: bool = Field(serialization_alias="emailSent")
    message: str | None = None


class ResendOtpBody(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _required(v)


class ResendOtpResponse(BaseModel):
    success: bool
    email_sent: bool = Field(serialization_alias="emailSent")
    cooldown_seconds: int = Field(serialization_alias="cooldownSeconds")
    message: str | None = None


class VerifyOtpBody(BaseModel):
    email: str
    otp_code: str = Field(alias="otpCode")
    password: str

    @field_validator("email")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _required(v)

    @field_validator("otp_code")
    @classmethod
    def six_digits(cls, v: str) -> str:
        s = (v or "").strip()
        if len(s) != 6 or not s.isdigit():
            raise ValueError("Verification code must be exactly 6 digits.")
        return s

    class Config:
        populate_by_name = True


class SessionOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class VerifyOtpResponse(BaseModel):
    success: bool
    session: SessionOut
    user_id: int = Field(serialization_alias="userId")
    provisioning: str
    message: str | None = None
    diagnostics: dict | None = None


class IdentityResponse(BaseModel):
    id: int
    email: str
    email_confirmed: bool = Field(serialization_alias="emailConfirmed")
    is_client_account: bool = Field(serialization_alias="isClientAccount")


class RepairBody(BaseModel):
    company_name: str | None = Field(default=None, alias="companyName")
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")

    class Config:
        populate_by_name = True

    def fallback_metadata(self) -> dict:
        return {
            "company_name": self.company_name or "",
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
        }


class CancelWaitBody(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _required(v)


class CancelWaitResponse(BaseModel):
    success: bool
    cancelled: bool
