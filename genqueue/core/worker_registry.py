"""
Worker registry - where the GPU/chat workers live and whether they respond.

Worker URLs are kept in the single-row ``system_config`` document:

    {
        "workerUrl": "https://...",        # WAN (video/image) worker
        "chatWorkerUrl": "https://...",    # chat worker
        "workerHealthCache": {"wanWorker": {...}, "chatWorker": {...}},
        "lastHealthCheck": "..."
    }
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

import httpx
from sqlalchemy.orm import Session

from genqueue.core.config import (
    CHAT_WORKER_URL,
    HUGGING_FACE_ACCESS_TOKEN,
    METRICS_QUEUES,
    WORKER_HEALTH_TIMEOUT,
)
from genqueue.core.errors import NotFoundError, UpstreamError, ValidationError
from genqueue.core.queue import UpstashQueue
from genqueue.db.models import SystemConfig

logger = logging.getLogger(__name__)

# worker_type -> (config key holding the URL, health cache key)
WORKER_TYPES = {
    "chat": ("chatWorkerUrl", "chatWorker"),
    "wan": ("workerUrl", "wanWorker"),
    "video": ("workerUrl", "wanWorker"),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class WorkerHealth:
    worker_url: Optional[str]
    is_healthy: bool
    health_error: Optional[str] = None
    response_time_ms: Optional[int] = None
    last_checked: str = ""

    def to_dict(self) -> dict:
        return {
            "isHealthy": self.is_healthy,
            "lastChecked": self.last_checked,
            "responseTimeMs": self.response_time_ms,
            "healthError": self.health_error,
            "workerUrl": self.worker_url,
        }


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def check_worker_health(
    http: httpx.Client, worker_url: str, timeout: float = WORKER_HEALTH_TIMEOUT
) -> WorkerHealth:
    """
    GET ``{worker_url}/health`` within ``timeout`` seconds.

    Never raises: every failure is reported through ``health_error``.
    """
    headers = {}
    if HUGGING_FACE_ACCESS_TOKEN and urlparse(worker_url).netloc.endswith(".hf.space"):
        headers["Authorization"] = f"Bearer {HUGGING_FACE_ACCESS_TOKEN}"

    t0 = time.perf_counter()
    try:
        resp = http.get(f"{worker_url.rstrip('/')}/health", headers=headers, timeout=timeout)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        error = str(e) or e.__class__.__name__
        logger.warning(f"Worker {worker_url} health check failed: {error}")
        return WorkerHealth(worker_url, False, error, None, _now())

    response_time_ms = int((time.perf_counter() - t0) * 1000)
    if resp.status_code >= 400:
        error = f"HTTP {resp.status_code}: {resp.reason_phrase}"
        return WorkerHealth(worker_url, False, error, response_time_ms, _now())
    if not resp.text.strip():
        return WorkerHealth(worker_url, False, "Empty health response", response_time_ms, _now())
    return WorkerHealth(worker_url, True, None, response_time_ms, _now())


def get_system_config(db: Session) -> SystemConfig:
    row = db.query(SystemConfig).filter(SystemConfig.id == 1).first()
    if not row:
        row = SystemConfig(id=1, config={})
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


def update_system_config(db: Session, **values) -> dict:
    row = get_system_config(db)
    row.config = {**(row.config or {}), **values}
    db.commit()
    return row.config


def _worker_keys(worker_type: str) -> tuple:
    if worker_type not in WORKER_TYPES:
        raise ValidationError(f"Unknown worker type: {worker_type}")
    return WORKER_TYPES[worker_type]


def resolve_worker_url(db: Session, worker_type: str) -> Optional[str]:
    url_key, _ = _worker_keys(worker_type)
    url = get_system_config(db).config.get(url_key)
    if not url and worker_type == "chat":
        url = CHAT_WORKER_URL
    return url


def get_active_worker(db: Session, http: httpx.Client, worker_type: str) -> dict:
    worker_url = resolve_worker_url(db, worker_type)
    if not worker_url:
        raise NotFoundError(f"No {worker_type} worker URL configured")

    health = check_worker_health(http, worker_url)
    return {
        "success": True,
        "worker_url": worker_url,
        "isHealthy": health.is_healthy,
        "healthError": health.health_error,
        "responseTimeMs": health.response_time_ms,
    }


def register_worker_url(
    db: Session,
    http: httpx.Client,
    worker_url: str,
    worker_type: str = "wan",
    auto_registered: bool = False,
    registration_method: str = "manual",
    detection_method: str = "manual",
) -> dict:
    """Store a worker URL after confirming that it answers its health check."""
    url_key, cache_key = _worker_keys(worker_type)
    if not worker_url:
        raise ValidationError("Worker URL is required")
    if not is_valid_url(worker_url):
        raise ValidationError("Invalid URL format")

    health = check_worker_health(http, worker_url)
    if not health.is_healthy:
        raise UpstreamError(f"Worker URL is not responding: {health.health_error}", status_code=400)

    now = _now()
    config = get_system_config(db).config or {}
    cache = dict(config.get("workerHealthCache") or {})
    cache[cache_key] = health.to_dict()
    update_system_config(
        db,
        **{
            url_key: worker_url,
            f"{url_key}UpdatedAt": now,
            "autoRegistered": auto_registered,
            "registrationMethod": registration_method,
            "detectionMethod": detection_method,
            "lastRegistrationAttempt": now,
            "workerHealthCache": cache,
        },
    )
    logger.info(f"Registered {worker_type} worker at {worker_url} ({registration_method})")
    return {
        "success": True,
        "workerUrl": worker_url,
        "updatedAt": now,
        "autoRegistered": auto_registered,
        "registrationMethod": registration_method,
    }


def run_health_checks(db: Session, http: httpx.Client) -> dict:
    """Check every known worker and cache the results in system config."""
    config = get_system_config(db).config or {}
    results = {}
    for worker_type in ("wan", "chat"):
        _, cache_key = WORKER_TYPES[worker_type]
        worker_url = resolve_worker_url(db, worker_type)
        if worker_url:
            results[cache_key] = check_worker_health(http, worker_url).to_dict()
        else:
            results[cache_key] = WorkerHealth(
                None, False, f"No {worker_type} worker URL configured", None, _now()
            ).to_dict()

    update_system_config(
        db,
        workerHealthCache={**(config.get("workerHealthCache") or {}), **results},
        lastHealthCheck=_now(),
    )
    logger.info(
        "Worker health: "
        + ", ".join(f"{k}={'healthy' if v['isHealthy'] else 'unhealthy'}" for k, v in results.items())
    )
    return results


def eta_band(depth: int) -> str:
    if depth == 0:
        return "immediate"
    if depth <= 3:
        return "< 1 min"
    if depth <= 10:
        return "1-3 mins"
    if depth <= 20:
        return "3-10 mins"
    return "> 10 mins"


def system_metrics(db: Session, queue: UpstashQueue) -> dict:
    depths = {name: 0 for name in METRICS_QUEUES}
    try:
        for name in METRICS_QUEUES:
            depths[name] = queue.llen(name)
    except UpstreamError as e:
        logger.error(f"Queue depth check failed: {e}")

    cache = (get_system_config(db).config or {}).get("workerHealthCache") or {}
    return {
        "timestamp": _now(),
        "workers": cache,
        "queues": depths,
        "etaEstimates": {name.replace("_queue", ""): eta_band(depth) for name, depth in depths.items()},
    }
