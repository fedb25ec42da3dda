import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jobbyai.api.routes import billing_webhook, subscription, usage
from jobbyai.core import config
from jobbyai.core.errors import EntitlementError, UsageLimitExceeded
from jobbyai.core.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL)
    logger.info("JobbyAI entitlements API starting")
    yield


# ============================================
# ✅ ERROR ENVELOPES
# ============================================

async def usage_limit_exceeded_handler(request: Request, exc: UsageLimitExceeded):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "success": False,
            "error": f"{exc.feature} limit reached",
            "code": exc.code,
        },
    )


async def entitlement_error_handler(request: Request, exc: EntitlementError):
    if exc.status_code >= 500:
        logger.error(f"Entitlement failure on {request.method} {request.url.path}: {exc.code} {exc.message}")
    else:
        logger.warning(f"Entitlement request rejected on {request.method} {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.message,
            "code": exc.code,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UsageLimitExceeded, usage_limit_exceeded_handler)
    app.add_exception_handler(EntitlementError, entitlement_error_handler)


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="JobbyAI Entitlements", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)

register_exception_handlers(app)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(subscription.router)
app.include_router(usage.router)
app.include_router(billing_webhook.router)


@app.get("/")
def root():
    return {"status": "JobbyAI entitlements API running"}
