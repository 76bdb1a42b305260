"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger.json import JsonFormatter

from bhalchandra_gateway.config import settings


class CustomJsonFormatter(JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    logger.addHandler(handler)

    # SQL echo and HTTP client chatter drown out request logs
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_approval(request_id: str, loan_id: str, user_id: str, principal: int, installment_amount: int) -> None:
    """Log structured approval outcome"""
    logging.info(
        "Loan approved",
        extra={
            "request_id": request_id,
            "loan_id": loan_id,
            "user_id": user_id,
            "step": "loan_approved",
            "principal": principal,
            "installment_amount": installment_amount,
        },
    )


def log_payment(
    request_id: str,
    loan_id: str,
    period_number: int,
    paid_amount: int,
    outstanding_amount: int,
    loan_status: str,
    payment_reference: Optional[str] = None,
) -> None:
    """Log structured payment outcome"""
    logging.info(
        "EMI payment applied",
        extra={
            "request_id": request_id,
            "loan_id": loan_id,
            "step": "payment_applied",
            "period_number": period_number,
            "paid_amount": paid_amount,
            "outstanding_amount": outstanding_amount,
            "loan_status": loan_status,
            "payment_reference": payment_reference,
        },
    )
