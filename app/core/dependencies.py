from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from functools import lru_cache
from typing import Optional

from app.core.background import BackgroundDispatcher
from app.core.config import settings
from app.core.encryption import FieldCipher
from app.core.exceptions import ErrorCode, ServiceError
from app.core.locks import KeyedLocks
from app.core.security import TokenIssuer
from app.integrations.crm import CRMClient, MockCRMClient
from app.integrations.delivery import OtpDelivery, LoggingOtpDelivery
from app.integrations.identity import IdentityRegistry, MockIdentityRegistry

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache()
def get_token_issuer() -> TokenIssuer:
    """Token issuer configured from settings"""
    return TokenIssuer(
        secret_key=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        expires_in_seconds=settings.ACCESS_TOKEN_EXPIRE_SECONDS
    )


@lru_cache()
def get_field_cipher() -> FieldCipher:
    """PII field cipher using the configured key"""
    return FieldCipher.from_base64(settings.ENCRYPTION_KEY_BASE64)


@lru_cache()
def get_crm_client() -> CRMClient:
    return MockCRMClient()


@lru_cache()
def get_identity_registry() -> IdentityRegistry:
    return MockIdentityRegistry()


@lru_cache()
def get_otp_delivery() -> OtpDelivery:
    return LoggingOtpDelivery(log_codes=settings.OTP_DEV_LOG_CODE)


def get_locks(request: Request) -> KeyedLocks:
    return request.app.state.locks


def get_dispatcher(request: Request) -> BackgroundDispatcher:
    return request.app.state.dispatcher


async def get_current_phone(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    token_issuer: TokenIssuer = Depends(get_token_issuer)
) -> str:
    """Phone number proven by the bearer token"""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ServiceError(ErrorCode.UNAUTHORIZED, "Authentication required")
    return token_issuer.validate(credentials.credentials)
