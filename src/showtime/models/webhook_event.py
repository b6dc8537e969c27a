"""
Durable log of processed payment-gateway events, keyed by gateway event id
"""
from sqlalchemy import Column, String, DateTime, Text

from showtime.core.database import Base
from showtime.core.time import utcnow


class ProcessedWebhookEvent(Base):
    __tablename__ = "processed_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False)
    outcome = Column(String(20), nullable=False)
    detail = Column(Text)
    processed_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<ProcessedWebhookEvent(id={self.event_id}, type='{self.event_type}', outcome='{self.outcome}')>"
