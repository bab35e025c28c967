# equiplend/main.py
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request, status as fastapi_status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from equiplend.core import config
from equiplend.core.config import setup_logging
from equiplend.core.exceptions import LendingError
from equiplend.core.rate_limiter import get_rate_limiter, rate_limit_exception_handler
from equiplend.middleware.authentication import AuthMiddleware
from equiplend.middleware.logging import RequestLoggingMiddleware
from equiplend.db.database import init_db
from equiplend.api.v1.api import api_router_v1
from equiplend.scheduler.jobs import retry_failed_notifications
from equiplend.services.registry import build_sender, build_services

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup...")
    store = await init_db()
    services = build_services(
        store,
        sender=build_sender(config.NOTIFICATION_SENDER, store),
        cancel_policy=config.CANCEL_POLICY,
        admin_email=config.ADMIN_EMAIL,
        max_attempts=config.NOTIFICATION_MAX_ATTEMPTS,
        auto_dispatch=config.NOTIFICATION_AUTO_DISPATCH,
    )
    app.state.services = services
    logger.info("Store and lending services initialized.")

    scheduler = None
    if config.SCHEDULER_ENABLED:
        scheduler = AsyncIOScheduler(timezone=config.SCHEDULER_TIMEZONE)
        scheduler.add_job(
            retry_failed_notifications,
            trigger=IntervalTrigger(minutes=config.NOTIFICATION_RETRY_MINUTES),
            args=[services.dispatcher],
            id="retry_notifications_job",
            name="Retry Failed Notifications",
            replace_existing=True,
            misfire_grace_time=60 * config.NOTIFICATION_RETRY_MINUTES,
        )
        scheduler.start()
        logger.info(f"Scheduler started with timezone: {scheduler.timezone}")
    yield
    logger.info("Application shutdown...")
    if scheduler and scheduler.running: scheduler.shutdown()
    await services.dispatcher.wait_idle()
    await store.close()


app = FastAPI(
    title="Equipment Lending API",
    description="Borrow/return lifecycle, asset availability and room reservations.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---
app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)


@app.exception_handler(LendingError)
async def lending_exception_handler(request: Request, exc: LendingError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message} {exc.context}")
    else:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation Error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=fastapi_status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation Error", "error": "RequestValidationError",
                 "context": {"errors": jsonable_errors(exc)}},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP Exception: Status={exc.status_code}, Detail={exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail},
                        headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=True).error(f"Unhandled Exception: {exc}")
    return JSONResponse(status_code=fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR,
                        content={"detail": "An internal server error occurred."})


def jsonable_errors(exc: RequestValidationError):
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")} for err in exc.errors()]


# --- Middleware (last added runs first) ---
app.add_middleware(AuthMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.state.limiter = get_rate_limiter()
app.add_middleware(GZipMiddleware, minimum_size=500)

app.include_router(api_router_v1)


@app.get("/")
async def read_root():
    return {"message": "Equipment Lending API"}


@app.get("/health")
async def health(request: Request):
    services = getattr(request.app.state, "services", None)
    return {"status": "ok" if services else "starting", "store": config.STORE_BACKEND}
