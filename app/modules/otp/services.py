import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import select, delete, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.database import utcnow
from app.core.exceptions import ErrorCode, ServiceError
from app.core.locks import KeyedLocks
from app.core.security import TokenIssuer, generate_otp, hash_otp_code, mask_phone, verify_otp_code
from app.integrations.delivery import OtpDelivery
from app.integrations.identity import IdentityRegistry
from app.modules.otp.models import OtpChallenge, OtpChannel
from app.modules.otp.schemas import GenerateOtpResponse, VerifyOtpResponse, PersonalDataResponse

logger = logging.getLogger(__name__)


class OtpChallengeStore:
    """Persistence for OTP challenges"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, challenge: OtpChallenge) -> OtpChallenge:
        self.db.add(challenge)
        await self.db.commit()
        await self.db.refresh(challenge)
        return challenge

    async def get(self, challenge_id: UUID, for_update: bool = False) -> Optional[OtpChallenge]:
        query = select(OtpChallenge).where(OtpChallenge.id == challenge_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def save(self, challenge: OtpChallenge) -> None:
        self.db.add(challenge)
        await self.db.commit()

    async def find_latest_active(self, phone_number: str, now: datetime) -> Optional[OtpChallenge]:
        """Most recent unverified, unexpired challenge for a phone"""
        result = await self.db.execute(
            select(OtpChallenge)
            .where(
                and_(
                    OtpChallenge.phone_number == phone_number,
                    OtpChallenge.verified == False,  # noqa: E712
                    OtpChallenge.expires_at > now
                )
            )
            .order_by(desc(OtpChallenge.created_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def purge_expired(self, before: datetime) -> int:
        """Delete challenges that expired before ``before``; for a cleanup sweep"""
        result = await self.db.execute(
            delete(OtpChallenge).where(OtpChallenge.expires_at < before)
        )
        await self.db.commit()
        return result.rowcount or 0


class OtpChallengeManager:
    """Issues one-time codes and verifies them with attempt lockout"""

    def __init__(
        self,
        db: AsyncSession,
        token_issuer: TokenIssuer,
        delivery: OtpDelivery,
        identity_registry: IdentityRegistry,
        locks: KeyedLocks,
        ttl_seconds: int = settings.OTP_TTL_SECONDS,
        code_length: int = settings.OTP_LENGTH,
        max_attempts: int = settings.OTP_MAX_ATTEMPTS,
        lockout_minutes: int = settings.OTP_LOCKOUT_MINUTES,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[secrets.SystemRandom] = None
    ):
        self.store = OtpChallengeStore(db)
        self.token_issuer = token_issuer
        self.delivery = delivery
        self.identity_registry = identity_registry
        self.locks = locks
        self.ttl_seconds = ttl_seconds
        self.code_length = code_length
        self.max_attempts = max_attempts
        self.lockout_minutes = lockout_minutes
        self.clock = clock
        self.rng = rng or secrets.SystemRandom()

    async def generate(self, phone_number: str, channel: OtpChannel = OtpChannel.SMS) -> GenerateOtpResponse:
        """Create a challenge and hand the code to the delivery channel"""
        code = generate_otp(self.code_length, self.rng)
        otp_hash = await run_in_threadpool(hash_otp_code, code)

        now = self.clock()
        challenge = OtpChallenge(
            phone_number=phone_number,
            otp_hash=otp_hash,
            channel=OtpChannel(channel).value,
            attempts=0,
            verified=False,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
            locked_until=None
        )
        challenge = await self.store.add(challenge)
        logger.info(f"OTP challenge {challenge.id} created for {mask_phone(phone_number)}")

        await self.delivery.send(phone_number, challenge.channel, code)

        return GenerateOtpResponse(request_id=challenge.id, ttl_seconds=self.ttl_seconds)

    async def verify(self, request_id: UUID, phone_number: str, otp_code: str) -> VerifyOtpResponse:
        """Check a code; on success mint an access token for the phone"""
        async with self.locks.hold(f"otp:{request_id}"):
            await self._check_and_consume(request_id, phone_number, otp_code)

        access_token = self.token_issuer.issue(phone_number)
        logger.info(f"OTP verified successfully, requestId: {request_id}")

        return VerifyOtpResponse(
            verified=True,
            access_token=access_token,
            expires_in_seconds=self.token_issuer.expires_in_seconds,
            personal_data=await self._fetch_personal_data(phone_number)
        )

    async def _check_and_consume(self, request_id: UUID, phone_number: str, otp_code: str) -> None:
        challenge = await self.store.get(request_id, for_update=True)

        # Unknown id and wrong phone are indistinguishable to the caller
        if challenge is None:
            raise self._not_found()
        if challenge.phone_number != phone_number:
            logger.warning(f"Phone number mismatch for OTP request: {request_id}")
            raise self._not_found()

        now = self.clock()

        if challenge.is_locked(now):
            logger.warning(f"OTP verification attempted while locked, requestId: {request_id}")
            raise ServiceError(ErrorCode.OTP_LOCKED, context={"locked_until": challenge.locked_until.isoformat()})

        if challenge.is_expired(now):
            logger.info(f"OTP expired, requestId: {request_id}")
            raise ServiceError(ErrorCode.OTP_EXPIRED)

        if challenge.verified:
            logger.info(f"OTP already verified, requestId: {request_id}")
            raise ServiceError(ErrorCode.OTP_ALREADY_VERIFIED)

        challenge.attempts += 1

        # The attempt crossing the threshold is consumed without checking the code
        if challenge.attempts > self.max_attempts:
            challenge.locked_until = now + timedelta(minutes=self.lockout_minutes)
            await self.store.save(challenge)
            logger.warning(f"Max OTP attempts exceeded, requestId: {request_id}")
            raise ServiceError(
                ErrorCode.OTP_MAX_ATTEMPTS,
                f"Maximum OTP verification attempts exceeded. Please wait {self.lockout_minutes} minutes."
            )

        matches = await run_in_threadpool(verify_otp_code, otp_code, challenge.otp_hash)
        if not matches:
            await self.store.save(challenge)
            logger.info(f"Invalid OTP attempt {challenge.attempts}/{self.max_attempts}, requestId: {request_id}")
            raise ServiceError(
                ErrorCode.OTP_INVALID,
                context={"attempts_remaining": max(self.max_attempts - challenge.attempts, 0)}
            )

        challenge.verified = True
        await self.store.save(challenge)

    async def _fetch_personal_data(self, phone_number: str) -> Optional[PersonalDataResponse]:
        try:
            profile = await self.identity_registry.fetch_personal_data(phone_number)
        except Exception:
            # The challenge is already consumed; the token is still returned
            logger.exception(f"Identity registry lookup failed for {mask_phone(phone_number)}")
            return None
        if profile is None:
            return None
        return PersonalDataResponse.model_validate(profile)

    @staticmethod
    def _not_found() -> ServiceError:
        return ServiceError(
            ErrorCode.NOT_FOUND,
            "OTP request not found. Please request a new OTP.",
            wire_code="OTP_NOT_FOUND"
        )
