"""
Analytics event model
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey

from storefront.core.database import Base
from storefront.core.utils import utcnow


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(50), nullable=False, index=True)  # purchase, add_to_cart, ...
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    session_id = Column(String(64))
    path = Column(String(500))
    user_agent = Column(String(500))
    ip_address = Column(String(45))
    event_data = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
