from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.core.database import get_db
from app.core.dependencies import (
    get_token_issuer, get_otp_delivery, get_identity_registry, get_locks
)
from app.core.locks import KeyedLocks
from app.core.rate_limit import enforce_otp_rate_limit
from app.core.security import TokenIssuer
from app.integrations.delivery import OtpDelivery
from app.integrations.identity import IdentityRegistry
from app.modules.otp import schemas
from app.modules.otp.services import OtpChallengeManager

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/kredo-ms/otp-service",
    tags=["otp"],
    dependencies=[Depends(enforce_otp_rate_limit)]
)


def get_otp_manager(
    db: AsyncSession = Depends(get_db),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
    delivery: OtpDelivery = Depends(get_otp_delivery),
    identity_registry: IdentityRegistry = Depends(get_identity_registry),
    locks: KeyedLocks = Depends(get_locks)
) -> OtpChallengeManager:
    return OtpChallengeManager(db, token_issuer, delivery, identity_registry, locks)


@router.post("/generate-otp", response_model=schemas.GenerateOtpResponse)
async def generate_otp(
    request: schemas.GenerateOtpRequest,
    manager: OtpChallengeManager = Depends(get_otp_manager)
):
    """
    Generate a one-time code for phone verification.

    - Code is hashed before storage and never returned
    - Rate limited per client and endpoint
    """
    logger.info(f"OTP generation requested for channel: {request.channel.value}")
    return await manager.generate(request.phone_number, request.channel)


@router.post("/verify-otp", response_model=schemas.VerifyOtpResponse)
async def verify_otp(
    request: schemas.VerifyOtpRequest,
    manager: OtpChallengeManager = Depends(get_otp_manager)
):
    """
    Verify a one-time code and receive an access token.

    - Locks the challenge after too many failed attempts
    - Returns the profile from the identity registry
    """
    logger.info(f"OTP verification requested for requestId: {request.request_id}")
    return await manager.verify(request.request_id, request.phone_number, request.otp_code)
