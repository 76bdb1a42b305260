"""Prometheus metrics for EMI calculations, loan lifecycle events and outbound calls"""

from prometheus_client import Counter, Histogram

# Calculator metrics
emi_calculation_counter = Counter(
    "bhalchandra_emi_calculations_total",
    "EMI calculations served",
    ["kind"],  # quote | schedule | gold
)

# Loan lifecycle metrics
loan_application_counter = Counter(
    "bhalchandra_loan_applications_total",
    "Loan applications submitted",
    ["product"],
)

loan_decision_counter = Counter(
    "bhalchandra_loan_decisions_total",
    "Loan approval decisions",
    ["outcome"],  # approved | rejected
)

loan_principal_bucket_counter = Counter(
    "bhalchandra_loan_principal_bucket",
    "Approved principal by bucket",
    ["bucket"],  # <=1L, 1L-10L, 10L-1Cr, >1Cr
)

payment_counter = Counter(
    "bhalchandra_emi_payments_total",
    "EMI payments applied",
    ["loan_status"],  # active | closed
)

payment_amount_counter = Counter(
    "bhalchandra_emi_paid_amount_total",
    "Sum of EMI payments applied, whole currency units",
)

state_conflict_counter = Counter(
    "bhalchandra_state_conflicts_total",
    "Operations rejected because of loan or schedule line state",
    ["operation"],
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Loan event webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed webhook deliveries",
)

# Assistant metrics
assistant_failures_counter = Counter(
    "assistant_failures_total",
    "Failed conversational AI calls",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_approval(principal: int) -> None:
    """Record approval and bucket its principal for portfolio distribution"""
    loan_decision_counter.labels(outcome="approved").inc()

    if principal <= 100_000:
        bucket = "<=1L"
    elif principal <= 1_000_000:
        bucket = "1L-10L"
    elif principal <= 10_000_000:
        bucket = "10L-1Cr"
    else:
        bucket = ">1Cr"

    loan_principal_bucket_counter.labels(bucket=bucket).inc()


def record_payment(paid_amount: int, loan_status: str) -> None:
    payment_counter.labels(loan_status=loan_status).inc()
    payment_amount_counter.inc(paid_amount)
