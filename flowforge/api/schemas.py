"""
Pydantic response models for the FlowForge cache API.
"""

from typing import Optional

from pydantic import BaseModel, Field

from flowforge.cache.models import CacheStats


class CleanupResponse(BaseModel):
    """Body returned by a successful cleanup.

    Attributes:
        message: Human-readable outcome.
        stats: Statistics over the entries that survived the pass.
        removed_count: Entries removed by this pass.
        remaining_count: Entries still stored after the pass.
    """

    message: str
    stats: CacheStats
    removed_count: int = 0
    remaining_count: int = 0


class CacheHealth(BaseModel):
    """Cache section of the health response."""

    backend: str
    entries: Optional[int] = None
    status: str = "healthy"


class HealthResponse(BaseModel):
    """Health check response.

    Attributes:
        status: Service health status.
        version: API version string.
        uptime_seconds: Seconds since service start.
        cache: Backend name and entry count.
        sweeper: Background sweeper counters, when one is running.
    """

    status: str
    version: str
    uptime_seconds: float
    cache: CacheHealth
    sweeper: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Standard error body.

    Attributes:
        error: Short error message safe to show to callers.
        request_id: Request ID for correlation.
    """

    error: str
    request_id: Optional[str] = Field(default=None)
