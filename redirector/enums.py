"""Shared enums for the redirector service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "FailurePolicy", "RequestStatus", "CacheStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class FailurePolicy(StrEnum):
    """What the count aggregator does when the durable store rejects a flush."""

    FATAL = "fatal"
    RETRY = "retry"


class RequestStatus(StrEnum):
    """Outcome labels for request metrics."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache lookup outcome labels."""

    HIT = "hit"
    MISS = "miss"
