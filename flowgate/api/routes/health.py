"""
FlowGate API - health check.
"""

import time
from datetime import datetime

import psutil
from fastapi import APIRouter, Depends

from flowgate.api.dependencies import get_orchestrator
from flowgate.api.models import HealthResponse
from flowgate.core.orchestrator import Orchestrator
from flowgate.utils.logger import get_logger
from flowgate.version import __version__

logger = get_logger(__name__)

router = APIRouter()

# Track application startup time
_startup_time = time.time()


def get_memory_usage_mb():
    try:
        return round(psutil.Process().memory_info().rss / (1024**2), 1)
    except psutil.Error as e:
        logger.warning(f"Could not get memory usage: {e}")
        return None


@router.get("/health", response_model=HealthResponse)
def health_check(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Service status, store counts and sweeper state."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        timestamp=datetime.now(),
        uptime_seconds=time.time() - _startup_time,
        sweeper_running=orchestrator.sweeper.is_running,
        analyses=orchestrator.store.get_statistics(),
        memory_usage_mb=get_memory_usage_mb(),
    )
