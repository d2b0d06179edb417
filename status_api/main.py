"""
Status API for the NSX-NCP pod operator.

Read-only view over what the operator keeps alive: managed workload state,
their pods, the ClusterOperator conditions and the operator's event stream.
Run with:  python -m status_api.main
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from kubernetes.client import ApiException
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis import RedisError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ncp_operator import __version__
from ncp_operator import config as operator_config
from status_api.config import settings
from status_api.routers.resources import _get_redis, _init_metrics, _update_gauges, limiter
from status_api.routers.resources import router as resources_router
from status_api.services.kubernetes_service import MANAGED

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("status-api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    _init_metrics()
    logger.info(f"Status API serving {len(MANAGED)} managed resources: {[ref.name for ref in MANAGED]}")
    yield
    logger.info("Status API stopped")


app = FastAPI(
    title="NSX-NCP Operator Status API",
    description="Read-only status of the NSX resources kept alive by the NCP pod operator",
    version=__version__,
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_methods=["GET"],
    allow_headers=["*"],
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(resources_router, prefix="/api")


def _redis_status() -> str:
    r = _get_redis()
    if r is None:
        return "disabled"
    try:
        r.ping()
    except RedisError:
        return "disconnected"
    return "connected"


@app.get("/health")
async def health():
    """Liveness plus event stream connectivity."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "operator": operator_config.CLUSTER_OPERATOR_NAME,
        "managed": sorted(ref.name for ref in MANAGED),
        "redis": _redis_status(),
        "version": __version__,
    }


@app.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    try:
        _update_gauges()
    except ApiException as e:
        logger.warning(f"Gauge refresh failed: {e.status} {e.reason}")
    return PlainTextResponse(content=generate_latest().decode("utf-8"), media_type=CONTENT_TYPE_LATEST)


@app.exception_handler(ApiException)
async def kubernetes_exception_handler(request: Request, exc: ApiException):
    logger.error(f"Kubernetes API error on {request.url.path}: {exc.status} {exc.reason}")
    return JSONResponse(
        status_code=502,
        content={"detail": f"Kubernetes API error: {exc.status} {exc.reason}", "code": "KUBERNETES_ERROR"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


if __name__ == "__main__":
    uvicorn.run("status_api.main:app", host=settings.API_HOST, port=settings.API_PORT, log_level="info")
