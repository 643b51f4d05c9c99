"""
Test configuration and fixtures for the loan origination service tests.
"""
import os

# Cheap bcrypt for tests; must be set before the app modules are imported
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from typing import AsyncGenerator, Dict, List, Tuple
from datetime import date

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from app.core.background import BackgroundDispatcher
from app.core.database import Base, get_db
from app.core.dependencies import get_field_cipher, get_crm_client, get_otp_delivery
from app.core.encryption import FieldCipher
from app.core.locks import KeyedLocks
from app.core.rate_limit import RateLimiter
from app.core.security import TokenIssuer
from app.integrations.crm import CustomerFlags, PushResult
from main import app


# ============================================================
# Database Fixtures
# ============================================================

# Use SQLite for testing (in-memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_ENCRYPTION_KEY = "a3JlZG8tdGVzdC1maWVsZC1lbmNyeXB0aW9uLWtleSE="
TEST_PHONE = "+994501234567"
OTHER_PHONE = "+994557654321"


@pytest.fixture
async def test_engine():
    """Create a fresh in-memory database per test"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for each test"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================
# Collaborator Fixtures
# ============================================================

class RecordingDelivery:
    """OTP delivery that keeps every code it was asked to send"""

    def __init__(self):
        self.sent: List[Tuple[str, str, str]] = []

    async def send(self, phone_number: str, channel: str, code: str) -> None:
        self.sent.append((phone_number, channel, code))

    @property
    def last_code(self) -> str:
        return self.sent[-1][2]


class StubCRMClient:
    """CRM client with fixed flags and configurable push outcome"""

    def __init__(self, flags: CustomerFlags = None, push_succeeds: bool = True):
        self.flags = flags or CustomerFlags.new_customer()
        self.push_succeeds = push_succeeds
        self.pushed: List[Dict[str, str]] = []
        self.flag_lookups = 0

    async def push_application(self, application_id, phone_number, first_name, last_name) -> PushResult:
        self.pushed.append({
            "application_id": application_id,
            "phone_number": phone_number,
            "first_name": first_name,
            "last_name": last_name,
        })
        if self.push_succeeds:
            return PushResult.ok("CRM-TEST0001")
        return PushResult.failure("CRM unavailable")

    async def fetch_customer_flags(self, phone_number: str) -> CustomerFlags:
        self.flag_lookups += 1
        return self.flags


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def crm_client() -> StubCRMClient:
    return StubCRMClient()


@pytest.fixture
def cipher() -> FieldCipher:
    return FieldCipher.from_base64(TEST_ENCRYPTION_KEY)


@pytest.fixture
def token_issuer() -> TokenIssuer:
    return TokenIssuer(secret_key="test-secret-key", expires_in_seconds=900)


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def dispatcher() -> BackgroundDispatcher:
    return BackgroundDispatcher(max_concurrency=2)


# ============================================================
# HTTP Client Fixtures
# ============================================================

@pytest.fixture
async def client(session_factory, delivery, crm_client, cipher) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database and collaborator overrides"""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_otp_delivery] = lambda: delivery
    app.dependency_overrides[get_crm_client] = lambda: crm_client
    app.dependency_overrides[get_field_cipher] = lambda: cipher

    # Fresh process state per test; asyncio primitives bind to the running loop
    app.state.rate_limiter = RateLimiter(capacity=10, window_seconds=60)
    app.state.dispatcher = BackgroundDispatcher(max_concurrency=2)
    app.state.locks = KeyedLocks()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await app.state.dispatcher.drain()
    app.dependency_overrides.clear()


@pytest.fixture
async def auth_headers(client, delivery) -> Dict[str, str]:
    """Bearer header obtained through the real OTP flow"""
    response = await client.post(
        "/api/v1/kredo-ms/otp-service/generate-otp",
        json={"phone_number": TEST_PHONE, "channel": "SMS"}
    )
    request_id = response.json()["request_id"]

    response = await client.post(
        "/api/v1/kredo-ms/otp-service/verify-otp",
        json={"phone_number": TEST_PHONE, "request_id": request_id, "otp_code": delivery.last_code}
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


# ============================================================
# Loan Fixtures
# ============================================================

def application_payload(phone_number: str = TEST_PHONE, **overrides) -> dict:
    """JSON body for apply-to-loan"""
    payload = {
        "phone_number": phone_number,
        "first_name": "Turan",
        "last_name": "Aliyev",
        "fin": "AZE1234567",
        "date_of_birth": "1990-05-10",
        "employment_status": "EMPLOYED",
        "monthly_income": "3000.00",
        "existing_monthly_debt": "100.00",
        "address": "Baku, Nasimi district, apt 42",
        "consent": {"terms_accepted": True, "privacy_accepted": True},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def apply_request():
    """Validated apply-to-loan request"""
    from app.modules.loans.schemas import ApplyToLoanRequest
    return ApplyToLoanRequest(**application_payload())


@pytest.fixture
def state_machine(db_session, cipher, crm_client, dispatcher, locks):
    from app.modules.loans.decision import DecisionEngine
    from app.modules.loans.services import ApplicationStateMachine
    return ApplicationStateMachine(
        db_session,
        cipher,
        crm_client,
        dispatcher,
        locks,
        decision_engine=DecisionEngine(today=lambda: date(2026, 1, 15)),
        crm_timeout_seconds=0.5
    )
