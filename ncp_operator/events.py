"""
Operator metrics and the optional Redis event stream.
"""

import json as _json
import logging
from datetime import datetime, timezone

import redis
from prometheus_client import Counter

from ncp_operator import config

logger = logging.getLogger("ncp-operator.events")

RESOURCES_RECREATED = Counter(
    "ncp_operator_resources_recreated_total",
    "Managed resources recreated after being found missing",
    ["name"],
)
PODS_RESTARTED = Counter(
    "ncp_operator_pods_restarted_total",
    "Node-agent pods deleted because of a DNS crash loop",
)
RECONCILE_ERRORS = Counter(
    "ncp_operator_reconcile_errors_total",
    "Failed reconciliation attempts",
    ["kind"],
)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# ---------------------------------------------------------------------------
# Redis client (optional, degrades gracefully if unavailable)
# ---------------------------------------------------------------------------
_redis_clients: dict = {}


def redis_client(url: str):
    """Lazy-init a Redis client per URL, shared with the status API. Returns None if unavailable."""
    if not url:
        return None
    client = _redis_clients.get(url)
    if client is not None:
        return client
    try:
        client = redis.Redis.from_url(url, decode_responses=True)
        client.ping()
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Redis unavailable (non-fatal): {e}")
        return None
    logger.info(f"Redis connected: {url}")
    _redis_clients[url] = client
    return client


def _get_redis():
    return redis_client(config.REDIS_URL)


def publish_event(resource: str, event_type: str, message: str):
    """Publish a reconciliation event to the Redis stream for the status API."""
    r = _get_redis()
    if not r:
        return
    entry = {
        "type": event_type,
        "message": message,
        "resource": resource,
        "timestamp": _now(),
    }
    try:
        r.xadd(config.EVENT_STREAM_KEY, entry, maxlen=config.EVENT_STREAM_MAXLEN)
        r.publish(config.EVENT_STREAM_KEY, _json.dumps(entry))
    except Exception as e:
        logger.debug(f"Redis publish failed (non-fatal): {e}")
