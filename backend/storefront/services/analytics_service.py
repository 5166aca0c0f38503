"""
Analytics event sink

Events are written in their own session after the triggering transaction
has committed. Failures are logged and dropped.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from storefront.core.database import get_db_session
from storefront.models.analytics import AnalyticsEvent

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Request details recorded alongside an event."""
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    path: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None

    @classmethod
    def from_request(cls, request, user_id: Optional[int] = None) -> "RequestContext":
        return cls(
            user_id=user_id,
            session_id=request.headers.get("X-Session-Id"),
            path=request.url.path,
            user_agent=(request.headers.get("user-agent") or "")[:500] or None,
            ip_address=request.client.host if request.client else None,
        )


class AnalyticsSink(Protocol):
    async def track_event(
        self,
        event_type: str,
        context: Optional[RequestContext] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class DatabaseAnalyticsSink:
    """Persists events to analytics_events."""

    def __init__(self, session_factory=get_db_session):
        self._session_factory = session_factory

    async def track_event(
        self,
        event_type: str,
        context: Optional[RequestContext] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or RequestContext()
        try:
            async with self._session_factory() as db:
                db.add(AnalyticsEvent(
                    event_type=event_type,
                    user_id=context.user_id,
                    session_id=context.session_id,
                    path=context.path,
                    user_agent=context.user_agent,
                    ip_address=context.ip_address,
                    event_data=data or {},
                ))
        except Exception as e:
            logger.error(f"Failed to record analytics event {event_type}: {e}")


analytics_sink = DatabaseAnalyticsSink()
