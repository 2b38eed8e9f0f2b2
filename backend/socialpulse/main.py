from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .errors import ConfigurationError, DataAccessError, ProviderError, SocialPulseError, ValidationError
from .logging_config import setup_logging
from .routes_accounts import router as accounts_router
from .routes_analytics import router as analytics_router
from .routes_oauth import router as oauth_router
from .settings import get_settings

logger = logging.getLogger("socialpulse")

app = FastAPI(title="socialpulse")
settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(exc: SocialPulseError) -> dict:
    body = {"error": exc.message}
    if exc.details:
        body["details"] = exc.details
    return body


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(_error_body(exc), status_code=422)


@app.exception_handler(DataAccessError)
async def data_access_error_handler(request: Request, exc: DataAccessError):
    return JSONResponse(_error_body(exc), status_code=503)


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    return JSONResponse(_error_body(exc), status_code=502)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"error": "Server is not configured"}, status_code=500)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(accounts_router)
app.include_router(oauth_router)
app.include_router(analytics_router)


@app.on_event("startup")
async def startup_event():
    """Fail fast on missing secrets, then start the scheduler."""
    setup_logging(settings.log_level.upper())
    settings.require()
    from .services.scheduler import scheduler_service
    scheduler_service.configure()
    scheduler_service.start()


@app.on_event("shutdown")
async def shutdown_event():
    from .services.scheduler import scheduler_service
    scheduler_service.stop()
