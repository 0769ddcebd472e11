import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from storify.core.config import settings, validate_config
from storify.core.database import create_all_tables
from storify.core.logging import configure_logging
from storify.core.middleware.request_id import RequestIdMiddleware
from storify.core.middleware.metrics import MetricsMiddleware
from storify.core.sessions import run_session_sweeper
from storify.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from storify.api import (
    activity,
    auth,
    books,
    health,
    library,
    listening,
    metrics,
    payments,
    subscriptions,
    webhooks,
)
from storify.features.catalog.service import seed_books
from storify.features.plans.service import seed_plans

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("storify")
    logger.info("Starting Storify backend...")
    app.state.startup_time = time.time()

    create_all_tables()
    plans_added = seed_plans()
    books_added = seed_books()
    if plans_added or books_added:
        logger.info(f"Seeded {plans_added} plans and {books_added} books")

    sweeper = asyncio.create_task(run_session_sweeper())
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        logger.info("Stopping Storify backend...")


app = FastAPI(title="Storify - Backend", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.APP_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(listening.router)
app.include_router(subscriptions.router)
app.include_router(payments.router)
app.include_router(webhooks.router)
app.include_router(books.router)
app.include_router(library.router)
app.include_router(activity.router)
app.include_router(health.root_router)
app.include_router(metrics.router)
