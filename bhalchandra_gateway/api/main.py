"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.responses import Response

from bhalchandra_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from bhalchandra_gateway.api.v1 import chat, emi, loans, products
from bhalchandra_gateway.infrastructure.database.session import get_db, init_db
from bhalchandra_gateway.infrastructure.observability.logging import setup_logging
from bhalchandra_gateway.config import settings

setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_tables_on_startup:
        init_db()
    yield


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Bhalchandra Finance Gateway",
        description="EMI calculation, loan account and repayment schedule service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # RequestIDMiddleware is outermost: last added runs first
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check(db: Session = Depends(get_db)):
        """Liveness plus a round trip to the loan database"""
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logging.error(f"Health check database error: {e}")
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "service": settings.service_name, "database": "unavailable"},
            )
        return {"status": "ok", "service": settings.service_name, "database": "ok"}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(emi.router, prefix="/v1", tags=["calculators"])
    app.include_router(products.router, prefix="/v1", tags=["products"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])
    app.include_router(chat.router, prefix="/v1", tags=["chat"])

    return app


app = create_app()
