"""FastAPI application for helpportal."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from helpportal.config import settings
from helpportal.database import close_db, init_db
from helpportal.errors import PortalError
from helpportal.routes.integrations import router as integrations_router
from helpportal.routes.onboarding import router as onboarding_router
from helpportal.routes.tickets import router as tickets_router
from helpportal.routes.webhooks import router as webhooks_router
from helpportal.services.token_manager import run_token_sweep, token_manager

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("helpportal starting up")
    await init_db()
    sweep = None
    if settings.token_sweep_enabled:
        sweep = asyncio.create_task(run_token_sweep(token_manager, settings.token_sweep_interval_seconds))
        logger.info("Token sweep every %ds", settings.token_sweep_interval_seconds)
    yield
    logger.info("helpportal shutting down")
    if sweep is not None:
        sweep.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep
    await close_db()


app = FastAPI(
    title="HelpPortal Integration Sync",
    description="Ticket provider federation, Stripe subscription sync and Jira Automation setup",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed (%s): %s", request.method, request.url.path, exc.code, exc.detail)
    else:
        logger.info("%s %s -> %d %s: %s", request.method, request.url.path, exc.status_code, exc.code, exc.detail)
    body = {"success": False, "error": exc.public_message, "code": exc.code}
    field = getattr(exc, "field", None)
    if field:
        body["field"] = field
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or None
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": first.get("msg", "Invalid request"),
            "code": "validation_error",
            "field": field,
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "An error occurred", "code": "internal_error"},
    )


app.include_router(tickets_router, prefix=settings.api_prefix)
app.include_router(webhooks_router, prefix=settings.api_prefix)
app.include_router(integrations_router, prefix=settings.api_prefix)
app.include_router(onboarding_router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "helpportal"}
