"""Pytest fixtures for testing"""

import pytest
from decimal import Decimal
from typing import Generator
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from bhalchandra_gateway.api.main import create_app
from bhalchandra_gateway.api.dependencies import get_assistant_client, get_loan_event_client
from bhalchandra_gateway.domain.loans import LoanAccountService, LoanLockRegistry
from bhalchandra_gateway.domain.models import LoanTerms
from bhalchandra_gateway.infrastructure.clients.assistant import AssistantClient
from bhalchandra_gateway.infrastructure.clients.loan_events import LoanEventClient
from bhalchandra_gateway.infrastructure.database.models import Base
from bhalchandra_gateway.infrastructure.database.repositories import LoanRepository
from bhalchandra_gateway.infrastructure.database.session import engine_options, get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, **engine_options(TEST_DATABASE_URL))
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Session factory over the test database, for tests that need one session per thread"""
    return TestingSessionLocal


@pytest.fixture
def loan_service(db: Session) -> LoanAccountService:
    """Loan service over the test database with its own lock registry"""
    return LoanAccountService(LoanRepository(db), locks=LoanLockRegistry())


@pytest.fixture
def personal_loan_terms() -> LoanTerms:
    """₹1,00,000 personal loan at 12% for a year: EMI 8885"""
    return LoanTerms(principal=100_000, annual_rate_percent=Decimal("12"), tenure_months=12)


@pytest.fixture
def event_client() -> MagicMock:
    """Loan event webhook client that records events instead of posting them"""
    client = MagicMock(spec=LoanEventClient)
    client.send_event = AsyncMock(return_value=None)
    return client


@pytest.fixture
def assistant_client() -> MagicMock:
    """Assistant client with a canned reply"""
    client = MagicMock(spec=AssistantClient)
    client.generate_reply = AsyncMock(return_value="Our home loans start at 8.5% p.a.")
    return client


@pytest.fixture
def client(db: Session, event_client: MagicMock, assistant_client: MagicMock) -> TestClient:
    """Create FastAPI test client with test database and stubbed outbound clients"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_loan_event_client] = lambda: event_client
    app.dependency_overrides[get_assistant_client] = lambda: assistant_client
    return TestClient(app)
