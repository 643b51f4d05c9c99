from pydantic import BaseModel, Field, validator
from typing import Optional
from datetime import date
from decimal import Decimal
from uuid import UUID

from app.core.config import settings
from app.modules.otp.models import OtpChannel

PHONE_PATTERN = r"^\+994[0-9]{9}$"


class GenerateOtpRequest(BaseModel):
    """Request a new one-time code for a phone number"""
    phone_number: str = Field(..., pattern=PHONE_PATTERN, examples=["+994501234567"])
    channel: OtpChannel = OtpChannel.SMS


class GenerateOtpResponse(BaseModel):
    request_id: UUID
    ttl_seconds: int


class VerifyOtpRequest(BaseModel):
    """Verify a one-time code against its challenge"""
    phone_number: str = Field(..., pattern=PHONE_PATTERN, examples=["+994501234567"])
    request_id: UUID
    otp_code: str

    @validator("otp_code")
    def validate_otp_code(cls, v):
        """Code must be exactly OTP_LENGTH digits"""
        if len(v) != settings.OTP_LENGTH or not v.isdigit():
            raise ValueError(f"OTP code must be exactly {settings.OTP_LENGTH} digits")
        return v


class PersonalDataResponse(BaseModel):
    """Profile fetched from the identity registry after verification"""
    first_name: str
    last_name: str
    fin: str
    date_of_birth: date
    address: str
    employment_status: str
    monthly_income: Decimal
    existing_monthly_debt: Decimal

    class Config:
        from_attributes = True


class VerifyOtpResponse(BaseModel):
    verified: bool = True
    access_token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    personal_data: Optional[PersonalDataResponse] = None
