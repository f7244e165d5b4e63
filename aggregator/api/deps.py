"""
Dependencies for database sessions, engine components and caller checks.

Components are built once by ``create_app`` and kept on ``app.state``; these
helpers hand them to route functions.
"""
import secrets
from typing import Generator, Optional
from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session
from aggregator.config import Settings
from aggregator.database import Database
from aggregator.services.aggregation_store import AggregationStore
from aggregator.services.audit import DecisionLogSink
from aggregator.services.conversion_processor import ConversionProcessor
from aggregator.services.flush_sweeper import FlushSweeper
from aggregator.services.scope_resolver import OfferRegistry, ScopeResolver
from aggregator.utils import get_logger

logger = get_logger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(database: Database = Depends(get_database)) -> Generator[Session, None, None]:
    """
    Database session dependency.
    Rolls back on error and always closes the session.
    """
    with database.session() as db:
        yield db


def get_processor(request: Request) -> ConversionProcessor:
    return request.app.state.processor


def get_sweeper(request: Request) -> FlushSweeper:
    return request.app.state.sweeper


def get_store(request: Request) -> AggregationStore:
    return request.app.state.store


def get_registry(request: Request) -> OfferRegistry:
    return request.app.state.registry


def get_resolver(request: Request) -> ScopeResolver:
    return request.app.state.resolver


def get_decision_log(request: Request) -> DecisionLogSink:
    return request.app.state.decision_log


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID", "unknown")


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip()
    return None


def require_scheduler(
    request: Request,
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Only the trusted scheduler may trigger a sweep.

    The scheduler authenticates with ``Authorization: Bearer <scheduler_secret>``.
    Without a configured secret every caller is refused.
    """
    token = _bearer_token(authorization)
    secret = settings.scheduler_secret
    if not secret or token is None or not secrets.compare_digest(token, secret):
        logger.warning(
            "Sweep trigger rejected: caller is not the scheduler",
            remote_addr=request.client.host if request.client else "unknown",
            user_agent=request.headers.get("User-Agent"),
            secret_configured=bool(secret),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_admin(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Admin routes require ``Bearer <admin_token>`` when a token is configured."""
    expected = settings.admin_token
    if not expected:
        return
    token = _bearer_token(authorization)
    if token is None or not secrets.compare_digest(token, expected):
        logger.warning("Admin access denied: invalid or missing token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )
