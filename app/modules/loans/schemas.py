from pydantic import BaseModel, Field, validator
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from app.modules.loans.models import ApplicationStatus, Decision, EmploymentStatus
from app.modules.otp.schemas import PHONE_PATTERN


class ConsentRequest(BaseModel):
    """Customer consent captured with the application"""
    terms_accepted: bool
    privacy_accepted: bool

    @validator("terms_accepted", "privacy_accepted")
    def validate_acceptance(cls, v):
        """Terms and privacy policy must both be accepted"""
        if not v:
            raise ValueError("Terms and privacy policy must be accepted")
        return v


class ApplyToLoanRequest(BaseModel):
    """Personal and financial information for a new application"""
    phone_number: str = Field(..., pattern=PHONE_PATTERN, examples=["+994501234567"])
    first_name: str = Field(..., min_length=2, max_length=100)
    last_name: str = Field(..., min_length=2, max_length=100)
    fin: str = Field(..., pattern=r"^[A-Z0-9]{7,10}$", examples=["AZE1234567"])
    date_of_birth: date
    employment_status: EmploymentStatus
    monthly_income: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    existing_monthly_debt: Decimal = Field(Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)
    address: str = Field(..., min_length=5, max_length=500)
    consent: ConsentRequest

    @validator("date_of_birth")
    def validate_date_of_birth(cls, v):
        """Date of birth must be in the past"""
        if v >= date.today():
            raise ValueError("Date of birth must be in the past")
        return v


class ApplyToLoanResponse(BaseModel):
    application_id: UUID
    status: ApplicationStatus


class SubmitAmountRequest(BaseModel):
    """Requested loan amount and term"""
    requested_amount: Decimal = Field(..., ge=Decimal("100.00"), le=Decimal("50000.00"), max_digits=12, decimal_places=2)
    term_months: int = Field(..., ge=3, le=60)


class SubmitAmountResponse(BaseModel):
    application_id: UUID
    status: ApplicationStatus


class LoanResultResponse(BaseModel):
    """Decision snapshot for an application"""
    application_id: UUID
    status: ApplicationStatus
    decision: Optional[Decision] = None
    score: Optional[int] = None
    approved_amount: Optional[Decimal] = None
    apr: Optional[Decimal] = None
    reason_codes: List[str] = []
    last_updated: datetime


class ApplicationActionResponse(BaseModel):
    application_id: UUID
    status: ApplicationStatus


class ApplicationSummary(BaseModel):
    id: UUID
    status: ApplicationStatus
    decision: Optional[Decision] = None
    requested_amount: Optional[Decimal] = None
    term_months: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ApplicationDetailResponse(BaseModel):
    """Application with sensitive fields decrypted for the owner"""
    application_id: UUID
    status: ApplicationStatus
    first_name: str
    last_name: str
    fin_masked: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: date
    employment_status: EmploymentStatus
    monthly_income: Decimal
    existing_monthly_debt: Decimal
    requested_amount: Optional[Decimal] = None
    term_months: Optional[int] = None
    consent_timestamp: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
