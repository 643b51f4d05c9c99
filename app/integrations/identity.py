"""
National identity registry contract (profile lookup after phone verification).
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Protocol

from app.core.security import mask_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersonalData:
    """Profile returned by the registry for a verified phone number"""
    first_name: str
    last_name: str
    fin: str
    date_of_birth: date
    address: str
    employment_status: str
    monthly_income: Decimal
    existing_monthly_debt: Decimal


class IdentityRegistry(Protocol):
    async def fetch_personal_data(self, phone_number: str) -> Optional[PersonalData]:
        ...


class MockIdentityRegistry:
    """Returns a fixed profile regardless of phone number"""

    PROFILE = PersonalData(
        first_name="Turan",
        last_name="Aliyev",
        fin="7ABC123",
        date_of_birth=date(1990, 5, 10),
        address="Baku, Nasimi district, apt 42",
        employment_status="EMPLOYED",
        monthly_income=Decimal("3000.00"),
        existing_monthly_debt=Decimal("100.00"),
    )

    async def fetch_personal_data(self, phone_number: str) -> Optional[PersonalData]:
        logger.info(f"Mock identity registry: profile lookup for phone {mask_phone(phone_number)}")
        return self.PROFILE
