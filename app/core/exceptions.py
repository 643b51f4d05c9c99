"""
Error taxonomy shared by every service.

Every business-rule failure is a ``ServiceError`` tagged with one member of the
closed ``ErrorCode`` set. The HTTP layer maps codes to status codes and masks
the message of internal faults.
"""
import enum
from typing import Any, Dict, Optional

from fastapi import status


class ErrorCode(str, enum.Enum):
    """Machine-readable failure codes"""
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    DUPLICATE_APPLICATION = "DUPLICATE_APPLICATION"
    INVALID_STATUS = "INVALID_STATUS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_INVALID = "OTP_INVALID"
    OTP_LOCKED = "OTP_LOCKED"
    OTP_MAX_ATTEMPTS = "OTP_MAX_ATTEMPTS"
    OTP_ALREADY_VERIFIED = "OTP_ALREADY_VERIFIED"
    DECRYPTION_ERROR = "DECRYPTION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


HTTP_STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.DUPLICATE_APPLICATION: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_STATUS: status.HTTP_409_CONFLICT,
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.OTP_EXPIRED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.OTP_INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorCode.OTP_LOCKED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.OTP_MAX_ATTEMPTS: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.OTP_ALREADY_VERIFIED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.DECRYPTION_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# Codes whose detail never leaves the server
MASKED_CODES = {ErrorCode.DECRYPTION_ERROR, ErrorCode.INTERNAL_ERROR}

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."

DEFAULT_MESSAGES = {
    ErrorCode.NOT_FOUND: "Resource not found.",
    ErrorCode.UNAUTHORIZED: "You are not authorized to perform this action.",
    ErrorCode.DUPLICATE_APPLICATION: "An active loan application already exists for this phone number.",
    ErrorCode.INVALID_STATUS: "Application is not in the expected status.",
    ErrorCode.VALIDATION_ERROR: "Request validation failed",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Too many requests. Please try again later.",
    ErrorCode.OTP_EXPIRED: "OTP has expired. Please request a new one.",
    ErrorCode.OTP_INVALID: "Invalid OTP code.",
    ErrorCode.OTP_LOCKED: "Too many failed attempts. Please wait before trying again.",
    ErrorCode.OTP_MAX_ATTEMPTS: "Maximum OTP verification attempts exceeded. Please wait before retrying.",
    ErrorCode.OTP_ALREADY_VERIFIED: "This OTP has already been verified.",
    ErrorCode.DECRYPTION_ERROR: GENERIC_ERROR_MESSAGE,
    ErrorCode.INTERNAL_ERROR: GENERIC_ERROR_MESSAGE,
}


class ServiceError(Exception):
    """A recoverable, typed failure surfaced to the caller.

    ``context`` carries structured data (statuses, field errors) and is
    rendered as ``details`` unless the code is masked. ``wire_code`` lets a
    module publish a more specific code (e.g. ``OTP_NOT_FOUND``) while the
    taxonomy member still drives the HTTP status.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        wire_code: Optional[str] = None
    ):
        self.code = code
        self.message = message or DEFAULT_MESSAGES[code]
        self.context = context or {}
        self.wire_code = wire_code or code.value
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE[self.code]

    @property
    def masked(self) -> bool:
        return self.code in MASKED_CODES

    def public_message(self) -> str:
        """Message safe to return to the caller"""
        return GENERIC_ERROR_MESSAGE if self.masked else self.message

    def public_details(self) -> Optional[Dict[str, Any]]:
        if self.masked or not self.context:
            return None
        return self.context

    def __repr__(self) -> str:
        return f"ServiceError({self.code.value}, {self.message!r})"
