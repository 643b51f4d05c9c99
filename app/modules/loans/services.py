import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy import select, and_, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.background import BackgroundDispatcher
from app.core.config import settings
from app.core.database import utcnow
from app.core.encryption import FieldCipher
from app.core.exceptions import ErrorCode, ServiceError
from app.core.locks import KeyedLocks
from app.core.security import mask_identifier, mask_phone
from app.integrations.crm import CRMClient, CustomerFlags
from app.modules.loans.decision import DecisionEngine
from app.modules.loans.models import LoanApplication, ApplicationStatus, Decision
from app.modules.loans.schemas import (
    ApplyToLoanRequest, ApplyToLoanResponse, SubmitAmountRequest, SubmitAmountResponse,
    LoanResultResponse, ApplicationActionResponse, ApplicationDetailResponse
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SensitiveFields:
    """Decrypted PII, scoped to the caller that asked for it"""
    fin: Optional[str]
    address: Optional[str]


class ApplicationStateMachine:
    """Owns the loan application lifecycle.

    INFO_SUBMITTED -> SCORING -> OFFER_PENDING | COMPLETED
    OFFER_PENDING -> OFFER_ACCEPTED | OFFER_REJECTED -> COMPLETED
    """

    def __init__(
        self,
        db: AsyncSession,
        cipher: FieldCipher,
        crm_client: CRMClient,
        dispatcher: BackgroundDispatcher,
        locks: KeyedLocks,
        decision_engine: Optional[DecisionEngine] = None,
        crm_timeout_seconds: float = settings.CRM_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = db
        self.cipher = cipher
        self.crm_client = crm_client
        self.dispatcher = dispatcher
        self.locks = locks
        self.decision_engine = decision_engine or DecisionEngine()
        self.crm_timeout_seconds = crm_timeout_seconds
        self.clock = clock

    # ============================================================
    # Transitions
    # ============================================================

    async def submit_info(self, request: ApplyToLoanRequest, authenticated_phone: str) -> ApplyToLoanResponse:
        """Create an application in INFO_SUBMITTED with PII encrypted"""
        logger.info(f"Processing loan application for phone {mask_phone(authenticated_phone)}")

        if request.phone_number != authenticated_phone:
            logger.warning("Phone number mismatch: request vs authenticated")
            raise ServiceError(ErrorCode.UNAUTHORIZED)

        async with self.locks.hold(f"phone:{request.phone_number}"):
            if await self.has_active_application(request.phone_number):
                logger.info(f"Duplicate application attempt for phone {mask_phone(request.phone_number)}")
                raise ServiceError(ErrorCode.DUPLICATE_APPLICATION)

            now = self.clock()
            application = LoanApplication(
                phone_number=request.phone_number,
                first_name=request.first_name,
                last_name=request.last_name,
                fin_encrypted=self.cipher.encrypt(request.fin),
                address_encrypted=self.cipher.encrypt(request.address),
                date_of_birth=request.date_of_birth,
                employment_status=request.employment_status,
                monthly_income=request.monthly_income,
                existing_monthly_debt=request.existing_monthly_debt,
                terms_accepted=request.consent.terms_accepted,
                privacy_accepted=request.consent.privacy_accepted,
                consent_timestamp=now,
                status=ApplicationStatus.INFO_SUBMITTED,
                reason_codes=[],
                created_at=now,
                updated_at=now
            )
            self.db.add(application)
            await self.db.commit()
            await self.db.refresh(application)

        logger.info(f"Loan application created: {application.id}")
        self._schedule_crm_push(application)

        return ApplyToLoanResponse(application_id=application.id, status=application.status)

    async def submit_amount(
        self,
        application_id: UUID,
        request: SubmitAmountRequest,
        authenticated_phone: str
    ) -> SubmitAmountResponse:
        """Record amount and term, then score synchronously"""
        logger.info(f"Submitting requested amount for application: {application_id}")

        async with self.locks.hold(f"application:{application_id}"):
            application = await self._load_owned(application_id, authenticated_phone, for_update=True)

            if application.status != ApplicationStatus.INFO_SUBMITTED:
                raise ServiceError(
                    ErrorCode.INVALID_STATUS,
                    f"Application is in {application.status.value} status, "
                    f"expected {ApplicationStatus.INFO_SUBMITTED.value}",
                    context={
                        "current_status": application.status.value,
                        "expected_status": ApplicationStatus.INFO_SUBMITTED.value,
                    }
                )

            application.requested_amount = request.requested_amount
            application.term_months = request.term_months
            self._transition(application, ApplicationStatus.SCORING)
            await self.db.commit()
            logger.info(f"Application {application_id} moved to SCORING status")

            await self._process_decision(application)

        return SubmitAmountResponse(application_id=application.id, status=application.status)

    async def accept_offer(self, application_id: UUID, authenticated_phone: str) -> ApplicationActionResponse:
        """Accept the offer. No status precondition is enforced."""
        logger.info(f"Accepting offer for application: {application_id}")
        return await self._set_status(application_id, authenticated_phone, ApplicationStatus.OFFER_ACCEPTED)

    async def reject_offer(self, application_id: UUID, authenticated_phone: str) -> ApplicationActionResponse:
        """Reject the offer and record a customer-initiated rejection"""
        logger.info(f"Rejecting offer for application: {application_id}")
        return await self._set_status(
            application_id,
            authenticated_phone,
            ApplicationStatus.OFFER_REJECTED,
            decision=Decision.CUSTOMER_REJECTED
        )

    async def finalize(self, application_id: UUID, authenticated_phone: str) -> ApplicationActionResponse:
        """Mark the application COMPLETED unconditionally"""
        logger.info(f"Finalizing application: {application_id}")
        return await self._set_status(application_id, authenticated_phone, ApplicationStatus.COMPLETED)

    # ============================================================
    # Reads
    # ============================================================

    async def get_result(self, application_id: UUID, authenticated_phone: str) -> LoanResultResponse:
        """Current status and decision snapshot"""
        logger.info(f"Fetching result for application: {application_id}")
        application = await self._load_owned(application_id, authenticated_phone)

        return LoanResultResponse(
            application_id=application.id,
            status=application.status,
            decision=application.decision,
            score=application.score,
            approved_amount=application.approved_amount,
            apr=application.apr,
            reason_codes=list(application.reason_codes or []),
            last_updated=application.updated_at
        )

    async def get_application(self, application_id: UUID, authenticated_phone: str) -> ApplicationDetailResponse:
        """Owner view with sensitive fields decrypted for this response only"""
        application = await self._load_owned(application_id, authenticated_phone)
        sensitive = self.read_sensitive(application)

        return ApplicationDetailResponse(
            application_id=application.id,
            status=application.status,
            first_name=application.first_name,
            last_name=application.last_name,
            fin_masked=mask_identifier(sensitive.fin),
            address=sensitive.address,
            date_of_birth=application.date_of_birth,
            employment_status=application.employment_status,
            monthly_income=application.monthly_income,
            existing_monthly_debt=application.existing_monthly_debt,
            requested_amount=application.requested_amount,
            term_months=application.term_months,
            consent_timestamp=application.consent_timestamp,
            created_at=application.created_at,
            updated_at=application.updated_at
        )

    async def list_applications(self, authenticated_phone: str) -> List[LoanApplication]:
        """Applications owned by the phone, newest first"""
        result = await self.db.execute(
            select(LoanApplication)
            .where(LoanApplication.phone_number == authenticated_phone)
            .order_by(desc(LoanApplication.created_at))
        )
        return list(result.scalars().all())

    async def has_active_application(self, phone_number: str) -> bool:
        """True if the phone owns an application not yet COMPLETED"""
        result = await self.db.execute(
            select(func.count(LoanApplication.id)).where(
                and_(
                    LoanApplication.phone_number == phone_number,
                    LoanApplication.status != ApplicationStatus.COMPLETED
                )
            )
        )
        return (result.scalar() or 0) > 0

    def read_sensitive(self, application: LoanApplication) -> SensitiveFields:
        """Decrypt FIN and address; nothing is cached on the entity"""
        return SensitiveFields(
            fin=self.cipher.decrypt(application.fin_encrypted),
            address=self.cipher.decrypt(application.address_encrypted)
        )

    # ============================================================
    # Internals
    # ============================================================

    async def _load_owned(
        self,
        application_id: UUID,
        authenticated_phone: str,
        for_update: bool = False
    ) -> LoanApplication:
        query = select(LoanApplication).where(LoanApplication.id == application_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        application = result.scalar_one_or_none()

        if application is None:
            raise ServiceError(
                ErrorCode.NOT_FOUND,
                f"Loan application not found: {application_id}",
                wire_code="APPLICATION_NOT_FOUND"
            )

        if application.phone_number != authenticated_phone:
            logger.warning(f"Unauthorized access attempt to application: {application_id}")
            raise ServiceError(ErrorCode.UNAUTHORIZED, "You are not authorized to access this application.")

        return application

    async def _set_status(
        self,
        application_id: UUID,
        authenticated_phone: str,
        new_status: ApplicationStatus,
        decision: Optional[Decision] = None
    ) -> ApplicationActionResponse:
        async with self.locks.hold(f"application:{application_id}"):
            application = await self._load_owned(application_id, authenticated_phone, for_update=True)
            previous = application.status
            self._transition(application, new_status)
            if decision is not None:
                application.decision = decision
            await self.db.commit()

        logger.info(f"Application {application_id} moved from {previous.value} to {new_status.value}")
        return ApplicationActionResponse(application_id=application.id, status=application.status)

    def _transition(self, application: LoanApplication, new_status: ApplicationStatus) -> None:
        application.status = new_status
        application.updated_at = self.clock()

    async def _process_decision(self, application: LoanApplication) -> None:
        flags = await self._fetch_customer_flags(application)
        logger.info(f"CRM flags received for application: {application.id}. Customer tier: {flags.credit_tier}")

        result = self.decision_engine.evaluate(application, flags)

        application.score = result.score
        application.decision = result.decision
        application.approved_amount = result.approved_amount
        application.apr = result.apr
        application.reason_codes = list(result.reason_codes)

        # Bank rejection ends the application; anything else waits for the customer
        if result.decision == Decision.REJECTED:
            self._transition(application, ApplicationStatus.COMPLETED)
        else:
            self._transition(application, ApplicationStatus.OFFER_PENDING)

        await self.db.commit()
        logger.info(
            f"Application {application.id} evaluation finished, "
            f"decision: {result.decision.value}, status: {application.status.value}"
        )

    async def _fetch_customer_flags(self, application: LoanApplication) -> CustomerFlags:
        """CRM flags bounded by a timeout; falls back to a new-customer profile"""
        try:
            return await asyncio.wait_for(
                self.crm_client.fetch_customer_flags(application.phone_number),
                timeout=self.crm_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"CRM flag lookup timed out after {self.crm_timeout_seconds}s "
                f"for application: {application.id}"
            )
        except Exception:
            logger.exception(f"CRM flag lookup failed for application: {application.id}")
        return CustomerFlags.new_customer()

    def _schedule_crm_push(self, application: LoanApplication) -> None:
        application_id = str(application.id)
        phone_number = application.phone_number
        first_name = application.first_name
        last_name = application.last_name
        crm_client = self.crm_client

        async def push() -> None:
            result = await crm_client.push_application(application_id, phone_number, first_name, last_name)
            if result.success:
                logger.info(f"Application {application_id} pushed to CRM, ref: {result.crm_reference_id}")
            else:
                # Counted as a failure by the dispatcher
                raise RuntimeError(f"CRM rejected application {application_id}: {result.error_message}")

        self.dispatcher.submit(f"crm-push-{application_id}", push)
