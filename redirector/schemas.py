"""Pydantic schemas for request/response validation in the redirector.

Schema Hierarchy
=================
::
    TokenCreate (Input)
    └─ target: str (non-empty)

    TokenResponse (Output)
    ├─ token: str
    └─ target: str

    HealthResponse (Output)
    ├─ status: HealthStatus
    ├─ store: HealthStatus
    ├─ aggregator: HealthStatus
    ├─ cached_tokens: int
    └─ pending_hits: int

Key Behaviours
===============
- The target is stored verbatim; URL syntax is not validated.
- FastAPI automatically generates OpenAPI docs from these schemas.
"""

from pydantic import BaseModel, Field

from redirector.enums import HealthStatus

__all__ = ["TokenCreate", "TokenResponse", "HealthResponse"]


class TokenCreate(BaseModel):
    target: str = Field(..., min_length=1, description="URL the token redirects to")


class TokenResponse(BaseModel):
    token: str
    target: str

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: HealthStatus
    store: HealthStatus
    aggregator: HealthStatus
    cached_tokens: int
    pending_hits: int
