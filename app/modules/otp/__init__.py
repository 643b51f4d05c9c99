# OTP module
from app.modules.otp.models import OtpChallenge, OtpChannel
from app.modules.otp.services import OtpChallengeStore, OtpChallengeManager
from app.modules.otp.router import router

__all__ = [
    "OtpChallenge", "OtpChannel",
    "OtpChallengeStore", "OtpChallengeManager", "router"
]
