"""SQLAlchemy ORM models for loan accounts, their EMI schedules and payments"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Numeric,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class LoanAccount(Base):
    """Loan application and, once approved, the running account"""

    __tablename__ = "loan_account"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    product = Column(String(64), nullable=False)
    application_number = Column(Text, nullable=False, unique=True)
    principal = Column(BigInteger, nullable=False)
    annual_rate_percent = Column(Numeric(6, 3), nullable=False)
    tenure_months = Column(Integer, nullable=False)
    installment_amount = Column(BigInteger, nullable=True)
    processing_fee = Column(BigInteger, nullable=False, default=0)
    status = Column(Text, nullable=False, default="pending")
    purpose = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    outstanding_amount = Column(BigInteger, nullable=True)
    total_paid_amount = Column(BigInteger, nullable=False, default=0)
    application_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    approval_date = Column(DateTime(timezone=True), nullable=True)
    disbursal_date = Column(Date, nullable=True)
    maturity_date = Column(Date, nullable=True)
    last_payment_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    schedule = relationship(
        "EmiScheduleLine",
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="EmiScheduleLine.period_number",
    )


class EmiScheduleLine(Base):
    """One installment period of an approved loan"""

    __tablename__ = "emi_schedule"
    __table_args__ = (UniqueConstraint("loan_id", "period_number", name="uq_emi_schedule_period"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan_account.id", ondelete="CASCADE"), nullable=False, index=True)
    period_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    installment_amount = Column(BigInteger, nullable=False)
    principal_component = Column(BigInteger, nullable=False)
    interest_component = Column(BigInteger, nullable=False)
    outstanding_balance_after = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    paid_amount = Column(BigInteger, nullable=True)
    paid_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    loan = relationship("LoanAccount", back_populates="schedule")


class LoanPayment(Base):
    """Payment received against a schedule line; one row per accepted payment"""

    __tablename__ = "loan_payment"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan_account.id", ondelete="CASCADE"), nullable=False, index=True)
    schedule_line_id = Column(UUID(as_uuid=True), ForeignKey("emi_schedule.id"), nullable=False)
    user_id = Column(Text, nullable=False, index=True)
    payment_reference = Column(Text, nullable=False, unique=True)
    amount = Column(BigInteger, nullable=False)
    payment_method = Column(String(32), nullable=False, default="online")
    payment_date = Column(Date, nullable=False)
    transaction_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    line = relationship("EmiScheduleLine")
