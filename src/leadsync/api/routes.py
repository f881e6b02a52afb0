"""
API routes for the LeadSync service.

Health and listener status for operators, plus the internal endpoints used
by the configuration UI (manual extraction test, OAuth code exchange).
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field

from leadsync.domain import ColumnSpec
from leadsync.domain.errors import AuthError, LeadSyncError, TransientExternalError, UpstreamRequestError
from leadsync.infrastructure.settings import get_settings
from leadsync.infrastructure.wiring import Pipeline

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str


class ListenerStatusResponse(BaseModel):
    """Change feed listener state."""

    running: bool
    last_error: str | None = None
    stats: dict[str, Any] = Field(default_factory=dict)


class ExtractRequest(BaseModel):
    """Manual extraction against an ad-hoc column list."""

    text: str = Field(..., description="Message text to extract from")
    columns: list[ColumnSpec] = Field(..., min_length=1, description="Columns to extract")


class ExtractResponse(BaseModel):
    fields: dict[str, str]
    model: str | None = None
    skipped_reason: str | None = None


class OAuthExchangeRequest(BaseModel):
    """Authorization code returned by Google's consent screen."""

    tenant_id: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
    redirect_uri: str | None = None


class OAuthExchangeResponse(BaseModel):
    tenant_id: str
    expires_at: str
    connected: bool = True


class OAuthUrlResponse(BaseModel):
    url: str


# ============================================================================
# Helpers
# ============================================================================


def get_pipeline(request: Request) -> Pipeline:
    """Pipeline built by the application lifespan."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return pipeline


def to_http_error(error: LeadSyncError) -> HTTPException:
    """Translate a pipeline error into an HTTP response."""
    if isinstance(error, AuthError):
        return HTTPException(status_code=401, detail=error.message)
    if isinstance(error, TransientExternalError):
        return HTTPException(status_code=503, detail=error.message)
    if isinstance(error, UpstreamRequestError):
        return HTTPException(status_code=502, detail=error.message)
    return HTTPException(status_code=400, detail=error.message)


# ============================================================================
# Health Endpoints
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app_version,
    )


# ============================================================================
# Listener Endpoints
# ============================================================================


@router.get("/internal/listener/status", response_model=ListenerStatusResponse, tags=["listener"])
def listener_status(pipeline: Pipeline = Depends(get_pipeline)) -> ListenerStatusResponse:
    listener = pipeline.listener
    return ListenerStatusResponse(
        running=listener.running,
        last_error=listener.last_error,
        stats=listener.stats.to_dict(),
    )


@router.post("/internal/listener/start", response_model=ListenerStatusResponse, tags=["listener"])
def start_listener(request: Request, pipeline: Pipeline = Depends(get_pipeline)) -> ListenerStatusResponse:
    """Start the listener, e.g. after a feed error tore it down."""
    request.app.state.subscription = pipeline.listener.start()
    return listener_status(pipeline)


@router.post("/internal/listener/stop", response_model=ListenerStatusResponse, tags=["listener"])
def stop_listener(request: Request, pipeline: Pipeline = Depends(get_pipeline)) -> ListenerStatusResponse:
    pipeline.listener.stop()
    request.app.state.subscription = None
    return listener_status(pipeline)


# ============================================================================
# Internal Endpoints
# ============================================================================


@router.post("/internal/extract", response_model=ExtractResponse, tags=["internal"])
def extract_fields(body: ExtractRequest, pipeline: Pipeline = Depends(get_pipeline)) -> ExtractResponse:
    """Run extraction only. Destinations and message status are not touched."""
    try:
        result = pipeline.extractor.extract(body.text, body.columns)
    except LeadSyncError as e:
        logger.error(f"Manual extraction failed: {e}")
        raise to_http_error(e) from e

    return ExtractResponse(fields=result.fields, model=result.model, skipped_reason=result.skipped_reason)


@router.get("/internal/oauth/google/url", response_model=OAuthUrlResponse, tags=["oauth"])
def google_auth_url(tenant_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> OAuthUrlResponse:
    return OAuthUrlResponse(url=pipeline.oauth.build_auth_url(state=tenant_id))


@router.post("/internal/oauth/google/exchange", response_model=OAuthExchangeResponse, tags=["oauth"])
def exchange_google_code(
    body: OAuthExchangeRequest,
    pipeline: Pipeline = Depends(get_pipeline),
) -> OAuthExchangeResponse:
    """Exchange an authorization code and store the encrypted tokens."""
    try:
        grant = pipeline.oauth.exchange_code(body.code, body.redirect_uri)
        credential = pipeline.credentials.store_authorization(body.tenant_id, grant)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except LeadSyncError as e:
        logger.error(f"Google code exchange failed for tenant {body.tenant_id}: {e}")
        raise to_http_error(e) from e

    logger.info(f"Google account connected for tenant {body.tenant_id}")
    return OAuthExchangeResponse(
        tenant_id=body.tenant_id,
        expires_at=credential.expires_at.isoformat(),
    )
