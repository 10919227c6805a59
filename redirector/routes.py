"""FastAPI route definitions for the redirector REST API.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /admin/tokens
        ├─ TokenCreate (request body)
        └─ TokenResponse (201) or 422/500

    GET  /:token
        └─ 307 Redirect or 404/500

Key Behaviours
===============
- Domain errors are translated to HTTP status codes here and nowhere else.
- A token collision and a storage failure both answer 500 with a generic body.
- Unknown tokens answer 404 and are not logged above DEBUG.
- /:token is registered last so it never shadows the fixed paths.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from redirector.dependencies import AppState, get_app_state, get_token_service
from redirector.enums import HealthStatus
from redirector.exceptions import StorageFailure, TokenConflict, TokenNotFound
from redirector.schemas import HealthResponse, TokenCreate, TokenResponse
from redirector.service import TokenService

__all__ = ["router"]

router = APIRouter()

INTERNAL_ERROR_DETAIL = "Internal server error"


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(state: AppState = Depends(get_app_state)) -> HealthResponse:
    store_status = HealthStatus.HEALTHY
    try:
        await state.store.ping()
    except StorageFailure as exc:
        state.logger.error(f"Store health check failed: {exc}")
        store_status = HealthStatus.UNHEALTHY

    aggregator_status = HealthStatus.HEALTHY if state.aggregator.running else HealthStatus.UNHEALTHY
    status = (
        HealthStatus.HEALTHY
        if store_status is HealthStatus.HEALTHY and aggregator_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(
        status=status,
        store=store_status,
        aggregator=aggregator_status,
        cached_tokens=len(state.cache),
        pending_hits=state.cache.pending_hits(),
    )


@router.post("/admin/tokens", response_model=TokenResponse, status_code=201, tags=["admin"])
async def create_token(
    payload: TokenCreate,
    service: TokenService = Depends(get_token_service),
) -> TokenResponse:
    try:
        registration = await service.register(payload.target)
    except (TokenConflict, StorageFailure) as exc:
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR_DETAIL) from exc
    return TokenResponse.model_validate(registration)


@router.get("/{token}", tags=["redirect"])
async def redirect_to_target(
    token: str,
    service: TokenService = Depends(get_token_service),
) -> RedirectResponse:
    try:
        target = await service.redirect(token)
    except TokenNotFound as exc:
        raise HTTPException(status_code=404, detail="Token not found") from exc
    except StorageFailure as exc:
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR_DETAIL) from exc
    return RedirectResponse(url=target, status_code=307)
