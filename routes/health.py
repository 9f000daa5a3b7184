"""
Health check endpoints for monitoring and alerting
Monitors: Supabase, OpenAI API, catalog endpoint, system resources
"""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Dict, Any, Optional
import os
import time
import httpx
import psutil
from datetime import datetime, timezone

router = APIRouter(prefix="/health", tags=["Health"])

SERVICE_VERSION = "1.0.0"


class HealthStatus(BaseModel):
    status: str  # "healthy", "degraded", "unhealthy"
    timestamp: str
    version: str
    checks: Dict[str, Dict[str, Any]]
    uptime_seconds: float


class ServiceCheck(BaseModel):
    status: str  # "up", "down", "degraded", "skipped"
    latency_ms: Optional[float] = None
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


SERVICE_START_TIME = time.time()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


async def _check_endpoint(url: str, headers: Dict[str, str], endpoint: str, ok_statuses=(200,)) -> ServiceCheck:
    """GET ``url`` and classify the answer as up / degraded / down."""
    try:
        start = time.time()
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(url, headers=headers)
        latency_ms = int((time.time() - start) * 1000)
    except Exception as e:
        return ServiceCheck(status="down", error=str(e))

    if response.status_code in ok_statuses:
        return ServiceCheck(status="up", latency_ms=latency_ms, details={"endpoint": endpoint})
    return ServiceCheck(status="degraded", latency_ms=latency_ms, error=f"HTTP {response.status_code}")


async def check_supabase() -> ServiceCheck:
    """Supabase REST API; without credentials the app runs on in-memory stores."""
    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_SERVICE_KEY")
    if not supabase_url or not supabase_key:
        return ServiceCheck(status="skipped", details={"mode": "in_memory"})
    return await _check_endpoint(
        f"{supabase_url.rstrip('/')}/rest/v1/",
        {"apikey": supabase_key, "Authorization": f"Bearer {supabase_key}"},
        "supabase_rest_api",
    )


async def check_openai() -> ServiceCheck:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return ServiceCheck(status="down", error="OpenAI API key not configured")
    return await _check_endpoint(
        "https://api.openai.com/v1/models",
        {"Authorization": f"Bearer {api_key}"},
        "openai_api",
    )


async def check_catalog() -> ServiceCheck:
    base_url = os.getenv("CATALOG_API_URL")
    if not base_url:
        return ServiceCheck(status="skipped", details={"mode": "in_memory"})
    api_key = os.getenv("CATALOG_API_KEY")
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
    # any answer below 500 means the endpoint is reachable
    return await _check_endpoint(base_url.rstrip("/"), headers, "catalog_api", ok_statuses=tuple(range(200, 500)))


def check_system_resources() -> ServiceCheck:
    """Check system CPU and memory usage"""
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage('/')
    except Exception as e:
        return ServiceCheck(status="down", error=str(e))

    warnings = []
    if cpu_percent > 80:
        warnings.append(f"High CPU: {cpu_percent}%")
    if memory.percent > 85:
        warnings.append(f"High memory: {memory.percent}%")
    if disk.percent > 90:
        warnings.append(f"High disk usage: {disk.percent}%")

    return ServiceCheck(
        status="degraded" if warnings else "up",
        error=", ".join(warnings) if warnings else None,
        details={
            "cpu_percent": round(cpu_percent, 1),
            "memory_percent": round(memory.percent, 1),
            "memory_available_mb": round(memory.available / 1024 / 1024, 1),
            "disk_percent": round(disk.percent, 1),
        }
    )


def overall_status(checks: Dict[str, ServiceCheck]) -> str:
    statuses = [c.status for c in checks.values() if c.status != "skipped"]
    if all(s == "up" for s in statuses):
        return "healthy"
    if any(s == "down" for s in statuses):
        return "unhealthy"
    return "degraded"


@router.get("/", response_model=HealthStatus)
async def health_check():
    """
    Comprehensive health check endpoint
    Returns system health status and dependencies
    """
    checks = {
        "supabase": await check_supabase(),
        "openai": await check_openai(),
        "catalog": await check_catalog(),
        "system": check_system_resources(),
    }
    return HealthStatus(
        status=overall_status(checks),
        timestamp=_now(),
        version=SERVICE_VERSION,
        checks={name: check.model_dump() for name, check in checks.items()},
        uptime_seconds=round(time.time() - SERVICE_START_TIME, 1),
    )


@router.get("/ready")
async def readiness_check():
    """Readiness check: 503 while a configured dependency is down."""
    supabase = await check_supabase()
    openai = await check_openai()
    if supabase.status == "down" or openai.status == "down":
        raise HTTPException(
            status_code=503,
            detail="Service not ready: dependencies unavailable"
        )
    return {"status": "ready"}


@router.get("/live")
async def liveness_check():
    return {"status": "alive", "timestamp": _now()}
