from sqlalchemy import Column, Integer, String, Boolean, DateTime, Uuid
from app.core.database import Base, utcnow
import enum
import uuid


class OtpChannel(str, enum.Enum):
    """OTP delivery channel"""
    SMS = "SMS"
    EMAIL = "EMAIL"


class OtpChallenge(Base):
    """One-time code challenge; only the code's hash is stored"""
    __tablename__ = "otp_challenges"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    phone_number = Column(String(20), nullable=False, index=True)
    otp_hash = Column(String(255), nullable=False)
    channel = Column(String(20), nullable=False, default=OtpChannel.SMS.value)

    # Verification state
    attempts = Column(Integer, nullable=False, default=0)
    verified = Column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)
    locked_until = Column(DateTime, nullable=True)

    def is_expired(self, now) -> bool:
        return now > self.expires_at

    def is_locked(self, now) -> bool:
        return self.locked_until is not None and now < self.locked_until
