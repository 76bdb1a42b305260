"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session
from bhalchandra_gateway.domain.loans import LoanAccountService
from bhalchandra_gateway.infrastructure.clients.assistant import AssistantClient
from bhalchandra_gateway.infrastructure.clients.loan_events import LoanEventClient
from bhalchandra_gateway.infrastructure.database.repositories import LoanRepository
from bhalchandra_gateway.infrastructure.database.session import get_db


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_current_user_id(x_user_id: str = Header(..., min_length=1, description="Authenticated caller")) -> str:
    """Caller identity as resolved by the authentication proxy in front of the service"""
    return x_user_id


def get_loan_service(db: Session = Depends(get_db)) -> LoanAccountService:
    """Provide a loan account service bound to the request's session"""
    return LoanAccountService(LoanRepository(db))


def get_loan_event_client() -> LoanEventClient:
    """Provide loan event webhook client instance"""
    return LoanEventClient()


def get_assistant_client() -> AssistantClient:
    """Provide conversational AI client instance"""
    return AssistantClient()
