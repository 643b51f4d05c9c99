"""
CRM collaborator contract and a mock implementation.

The real CRM connector lives outside this service. The application state
machine only depends on :class:`CRMClient`.
"""
import asyncio
import hashlib
import logging
import random
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from app.core.security import mask_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushResult:
    """Outcome of pushing an application to the CRM"""
    success: bool
    crm_reference_id: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def ok(cls, crm_reference_id: str) -> "PushResult":
        return cls(True, crm_reference_id, None)

    @classmethod
    def failure(cls, error_message: str) -> "PushResult":
        return cls(False, None, error_message)


@dataclass(frozen=True)
class CustomerFlags:
    """CRM facts about a customer that may affect underwriting"""
    existing_customer: bool = False
    has_active_loans: bool = False
    has_default_history: bool = False
    credit_tier: int = 0
    special_programs: List[str] = field(default_factory=list)

    @classmethod
    def new_customer(cls) -> "CustomerFlags":
        return cls()


class CRMClient(Protocol):
    async def push_application(
        self,
        application_id: str,
        phone_number: str,
        first_name: str,
        last_name: str
    ) -> PushResult:
        ...

    async def fetch_customer_flags(self, phone_number: str) -> CustomerFlags:
        ...


class MockCRMClient:
    """Simulates CRM latency and returns flags derived from the phone number"""

    def __init__(self, min_delay_ms: int = 50, max_delay_ms: int = 150, seed: Optional[int] = None):
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self._random = random.Random(seed)

    async def _simulate_latency(self) -> None:
        if self.max_delay_ms <= 0:
            return
        delay_ms = self._random.randint(self.min_delay_ms, self.max_delay_ms)
        await asyncio.sleep(delay_ms / 1000)

    async def push_application(
        self,
        application_id: str,
        phone_number: str,
        first_name: str,
        last_name: str
    ) -> PushResult:
        logger.info(f"Mock CRM: Pushing application {application_id} to CRM")
        await self._simulate_latency()

        crm_reference_id = "CRM-" + uuid.uuid4().hex[:8].upper()
        logger.info(f"Mock CRM: Application {application_id} pushed successfully, CRM ref: {crm_reference_id}")
        return PushResult.ok(crm_reference_id)

    async def fetch_customer_flags(self, phone_number: str) -> CustomerFlags:
        logger.info(f"Mock CRM: Fetching customer flags for phone {mask_phone(phone_number)}")
        await self._simulate_latency()

        # Stable across processes, unlike the builtin hash()
        phone_hash = int.from_bytes(hashlib.sha256(phone_number.encode("utf-8")).digest()[:4], "big")

        existing_customer = phone_hash % 3 == 0
        has_active_loans = existing_customer and phone_hash % 5 == 0
        has_default_history = phone_hash % 17 == 0
        credit_tier = (phone_hash % 5) + 1 if existing_customer else 0

        if existing_customer and phone_hash % 7 == 0:
            special_programs = ["LOYALTY_DISCOUNT", "FAST_TRACK"]
        elif existing_customer:
            special_programs = ["STANDARD"]
        else:
            special_programs = []

        logger.info(
            f"Mock CRM: Customer flags fetched - existing: {existing_customer}, "
            f"activeLoans: {has_active_loans}, tier: {credit_tier}"
        )
        return CustomerFlags(
            existing_customer=existing_customer,
            has_active_loans=has_active_loans,
            has_default_history=has_default_history,
            credit_tier=credit_tier,
            special_programs=special_programs,
        )
