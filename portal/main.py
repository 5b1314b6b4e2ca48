import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from portal import reconciliation
from portal.database import Base, engine, get_db
from portal.errors import PortalError, RateLimited
from portal.log import setup_logging
from portal.notifications import Notifier, get_notifier
from portal.paypal_service import PayPalClient, get_gateway
from portal.routes import router

setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title="Agency Portal Checkout Service")

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimited) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"detail": detail})


@app.post("/paypal/webhook")
async def paypal_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PayPalClient = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    # signatures cover the exact bytes, so read the body before any parsing
    payload = await request.body()
    return await run_in_threadpool(
        reconciliation.handle_webhook, db, gateway, notifier, payload, request.headers
    )


@app.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health_database_unreachable", error=str(e))
        return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "down"})
    return {"status": "healthy", "database": "up"}
