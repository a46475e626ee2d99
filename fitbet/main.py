import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from fitbet.api import challenges, health, jobs
from fitbet.core.config import settings, validate_config
from fitbet.core.database import create_all_tables, get_database_url
from fitbet.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from fitbet.core.logging import configure_logging
from fitbet.core.middleware.request_id import RequestIdMiddleware

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("fitbet")
    logger.info("Starting FitBet backend...")
    app.state.startup_time = time.time()
    if get_database_url():
        create_all_tables()
    else:
        logger.warning("DATABASE_URL not set; skipping table creation")
    try:
        yield
    finally:
        logging.getLogger("fitbet").info("Stopping FitBet backend...")


app = FastAPI(title="FitBet", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(health.root_router, tags=["health"])
app.include_router(challenges.router, tags=["challenges"])
app.include_router(jobs.router, tags=["jobs"])
