from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware
from app.api import price_recommendations
from app.core.config import settings
from app.core.logging import setup_logging
from app.services.agrolink_collector import AgrolinkCollectionError
from app.services.ama_bulletin import BulletinDiscoveryError, BulletinParseError
import logging
import time
import traceback

setup_logging(level=settings.LOG_LEVEL, json_logs=settings.JSON_LOGS)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=["200/minute"])

app = FastAPI(
    title="Recomendação de Preços",
    description="Cotações diárias de hortifrúti (boletim AMA Juazeiro, com fallback Agrolink)",
    version="1.0.0"
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Falhas das fontes externas viram 502, nao 500
async def source_error_handler(request: Request, exc: Exception):
    logger.warning(
        f"Fonte de cotações indisponível: {exc}",
        extra={'path': request.url.path, 'error_type': type(exc).__name__}
    )
    return JSONResponse(status_code=502, content={"detail": str(exc)})


for source_error in (BulletinDiscoveryError, BulletinParseError, AgrolinkCollectionError):
    app.add_exception_handler(source_error, source_error_handler)


class UnhandledErrorMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled exception em {request.url.path}: {e}\n{traceback.format_exc()}")
            return JSONResponse(status_code=500, content={"detail": f"Internal server error: {e}"})


app.add_middleware(UnhandledErrorMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.time()
    response = await call_next(request)

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code}",
        extra={
            'http': {
                'method': request.method,
                'path': request.url.path,
                'query': str(request.query_params) or None,
                'status_code': response.status_code,
                'duration_ms': round((time.time() - started) * 1000, 2),
            }
        }
    )
    return response


app.include_router(price_recommendations.router)


@app.on_event("startup")
async def startup_event():
    logger.info(
        "API de cotações iniciada",
        extra={'event': 'startup', 'sync_schedule': f"{settings.PRICE_SYNC_HOUR:02d}:{settings.PRICE_SYNC_MINUTE:02d} {settings.PRICE_SYNC_TIMEZONE}"}
    )


@app.get("/")
def root():
    return {"service": "price-recommendations", "version": app.version, "docs": "/docs"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}
