"""PrepX IQ backend entrypoint."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from prepx.app.api import leads, login, notifications, register
from prepx.app.core.dev_seed import ensure_default_dev_users
from prepx.app.core.errors import PrepXError, status_code_for, user_message_for
from prepx.app.core.logging import configure_logging
from prepx.app.core.settings import get_settings
from prepx.app.db.base import Base
from prepx.app.db.session import SessionLocal, engine

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name, version=settings.api_version)

origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(register.router)
app.include_router(login.router)
app.include_router(leads.router)
app.include_router(notifications.router)


@app.exception_handler(PrepXError)
async def handle_domain_error(request: Request, exc: PrepXError):
    headers = None
    if exc.status_code == 403:
        logger.warning("Permission denied on %s: %s", request.url.path, exc.message)
    elif exc.status_code == 401:
        logger.info("Rejected credentials on %s: %s", request.url.path, exc.message)
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=status_code_for(exc), content={"detail": user_message_for(exc)}, headers=headers
    )


@app.exception_handler(IntegrityError)
async def handle_integrity_error(request: Request, exc: IntegrityError):
    logger.warning("Integrity error on %s: %s", request.url.path, exc.orig)
    return JSONResponse(status_code=status_code_for(exc), content={"detail": user_message_for(exc)})


@app.get("/")
def read_root():
    return {"app": "PrepX IQ backend", "status": "ok"}


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.on_event("startup")
def seed_default_dev_users():
    db = SessionLocal()
    try:
        ensure_default_dev_users(db)
    finally:
        db.close()
