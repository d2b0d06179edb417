"""
Managed resource status routes (read-only).

Sources: live cluster reads for resources/pods/conditions, the operator's
Redis stream for reconciliation events.
"""

import logging

from fastapi import APIRouter, HTTPException, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from status_api.config import settings
from status_api.models import (
    ErrorResponse, EventEntry, EventListResponse, OperatorStatusResponse,
    PodListResponse, ResourceListResponse, ResourceStatus,
)
from status_api.services.kubernetes_service import (
    count_resources_by_state, find_managed, get_operator_conditions,
    get_resource_status, list_resource_statuses, list_workload_pods,
)
from ncp_operator import config as operator_config
from ncp_operator.events import redis_client

logger = logging.getLogger("resources")

router = APIRouter(tags=["resources"])
limiter = Limiter(key_func=get_remote_address)


# --- Redis client (optional, shared with the operator) ---
def _get_redis():
    return redis_client(settings.REDIS_URL)


# --- Prometheus metrics ---
_metrics_initialized = False


def _init_metrics():
    """Initialize Prometheus metrics (called once at startup)."""
    global _metrics_initialized, RESOURCES_BY_STATE
    if _metrics_initialized:
        return
    from prometheus_client import Gauge
    RESOURCES_BY_STATE = Gauge(
        "ncp_status_managed_resources",
        "Managed NSX resources by observed state",
        ["state"],
    )
    _metrics_initialized = True


def _update_gauges():
    if _metrics_initialized:
        counts = count_resources_by_state()
        for state in ["ready", "degraded", "missing"]:
            RESOURCES_BY_STATE.labels(state=state).set(counts.get(state, 0))


def _managed_or_404(name: str):
    ref = find_managed(name)
    if ref is None:
        raise HTTPException(status_code=404, detail=f"Resource '{name}' is not managed by the operator")
    return ref


# =========================================================================
# REST Endpoints
# =========================================================================

@router.get("/resources", response_model=ResourceListResponse)
@limiter.limit(settings.RATE_LIMIT)
async def list_resources_endpoint(request: Request):
    """List every managed resource with its observed state."""
    resources = list_resource_statuses()
    return ResourceListResponse(resources=resources, total=len(resources))


@router.get("/resources/{name}", response_model=ResourceStatus,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def get_resource_endpoint(name: str, request: Request):
    """Get one managed resource by name."""
    return get_resource_status(_managed_or_404(name))


@router.get("/resources/{name}/pods", response_model=PodListResponse,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def list_resource_pods_endpoint(name: str, request: Request):
    """Pods of a managed workload, including container waiting reasons."""
    ref = _managed_or_404(name)
    pods = list_workload_pods(ref)
    return PodListResponse(resource=name, pods=pods, total=len(pods))


@router.get("/operator", response_model=OperatorStatusResponse)
@limiter.limit(settings.RATE_LIMIT)
async def get_operator_status(request: Request):
    """ClusterOperator conditions (Degraded / Progressing / Available)."""
    return OperatorStatusResponse(
        name=operator_config.CLUSTER_OPERATOR_NAME,
        conditions=get_operator_conditions(),
    )


@router.get("/events", response_model=EventListResponse)
@limiter.limit(settings.RATE_LIMIT)
async def list_events(
    request: Request,
    limit: int = Query(50, ge=1, le=settings.EVENTS_MAX, description="Max events to return"),
):
    """Latest reconciliation events (recreations, pod restarts), newest first."""
    events = []
    r = _get_redis()
    if r:
        try:
            entries = r.xrevrange(operator_config.EVENT_STREAM_KEY, count=limit)
            for entry_id, data in entries:
                events.append(EventEntry(
                    id=entry_id,
                    type=data.get("type", ""),
                    resource=data.get("resource", ""),
                    message=data.get("message", ""),
                    timestamp=data.get("timestamp", ""),
                ))
        except Exception as e:
            logger.debug(f"Redis stream read failed: {e}")
    return EventListResponse(events=events, count=len(events))
