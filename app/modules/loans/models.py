from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Numeric, JSON, Uuid, Enum as SQLEnum
from app.core.database import Base, utcnow
import enum
import uuid


class ApplicationStatus(str, enum.Enum):
    """Loan application lifecycle status"""
    OTP_PENDING = "OTP_PENDING"
    OTP_VERIFIED = "OTP_VERIFIED"
    INFO_SUBMITTED = "INFO_SUBMITTED"
    AMOUNT_SUBMITTED = "AMOUNT_SUBMITTED"
    SCORING = "SCORING"
    OFFER_PENDING = "OFFER_PENDING"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    OFFER_REJECTED = "OFFER_REJECTED"
    PENDING_CRM = "PENDING_CRM"  # reserved, no transition produces it
    COMPLETED = "COMPLETED"


class Decision(str, enum.Enum):
    """Underwriting outcome"""
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    CUSTOMER_REJECTED = "CUSTOMER_REJECTED"


class EmploymentStatus(str, enum.Enum):
    """Applicant employment status"""
    EMPLOYED = "EMPLOYED"
    SELF_EMPLOYED = "SELF_EMPLOYED"
    UNEMPLOYED = "UNEMPLOYED"
    RETIRED = "RETIRED"
    STUDENT = "STUDENT"


class LoanApplication(Base):
    """Loan application; national ID and address are stored encrypted only"""
    __tablename__ = "loan_applications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    phone_number = Column(String(20), nullable=False, index=True)

    # Personal Information
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    fin_encrypted = Column(String(512), nullable=False)
    date_of_birth = Column(Date, nullable=False)
    address_encrypted = Column(String(2048), nullable=False)

    # Financial Profile
    employment_status = Column(SQLEnum(EmploymentStatus, native_enum=False, length=20), nullable=False)
    monthly_income = Column(Numeric(15, 2), nullable=False)
    existing_monthly_debt = Column(Numeric(15, 2), nullable=False, default=0)

    # Consent
    terms_accepted = Column(Boolean, nullable=False, default=False)
    privacy_accepted = Column(Boolean, nullable=False, default=False)
    consent_timestamp = Column(DateTime, nullable=True)

    # Loan Request
    requested_amount = Column(Numeric(15, 2), nullable=True)
    term_months = Column(Integer, nullable=True)

    # Lifecycle and Decision
    status = Column(
        SQLEnum(ApplicationStatus, native_enum=False, length=30),
        nullable=False,
        default=ApplicationStatus.INFO_SUBMITTED,
        index=True
    )
    score = Column(Integer, nullable=True)
    decision = Column(SQLEnum(Decision, native_enum=False, length=20), nullable=True)
    approved_amount = Column(Numeric(15, 2), nullable=True)
    apr = Column(Numeric(5, 2), nullable=True)
    reason_codes = Column(JSON, nullable=False, default=list)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
