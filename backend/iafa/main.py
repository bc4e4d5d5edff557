"""IAFA Ledger -- FastAPI Application."""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from iafa.config import settings
from iafa.database import async_engine, create_schema
from iafa.exceptions import LedgerError
from iafa.services.jobs import month_end_rollover, nightly_reconciliation

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting IAFA Ledger API...")

    # Verify DB connection
    try:
        async with async_engine.begin() as conn:
            await conn.exec_driver_sql("SELECT 1")
        logger.info("Database connection verified")
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")

    if settings.AUTO_CREATE_SCHEMA:
        await create_schema()
        logger.info("Database schema created")

    # Schedule jobs
    if settings.SCHEDULER_ENABLED:
        scheduler.add_job(
            month_end_rollover, "cron", day=1, hour=0, minute=15, id="month_end_rollover",
        )
        scheduler.add_job(
            nightly_reconciliation, "cron", hour=2, minute=30, id="nightly_reconciliation",
        )
        scheduler.start()
        logger.info("Scheduled jobs started (month-end rollover, reconciliation)")

    logger.info("IAFA Ledger API started successfully")
    yield

    # Shutdown
    if scheduler.running:
        scheduler.shutdown()
    await async_engine.dispose()
    logger.info("IAFA Ledger API shut down")


app = FastAPI(
    title="IAFA Ledger",
    description="Fund ledger with receipts, cheques, monthly snapshots and period closure",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

_HTTP_KINDS = {401: "unauthorized", 403: "forbidden", 404: "not_found"}


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in errors
    )
    return JSONResponse(
        status_code=422,
        content={"success": False, "kind": "validation_error", "message": message or "Invalid request"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "kind": _HTTP_KINDS.get(exc.status_code, "http_error"),
            "message": str(exc.detail),
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"{request.method} {request.url.path} storage failure: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "kind": "storage_error", "message": "Storage failure"},
    )


# Import and register routers
from iafa.routes import accounts, auth, cheques, donors, monthly_closure, reconciliation, transactions

app.include_router(auth.router)
app.include_router(accounts.router)
app.include_router(donors.router)
app.include_router(transactions.router)
app.include_router(cheques.router)
app.include_router(monthly_closure.router)
app.include_router(reconciliation.router)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "IAFA Ledger API", "version": "1.0.0"}
