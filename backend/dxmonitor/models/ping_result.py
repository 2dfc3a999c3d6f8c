"""PingResult model - one record per completed check."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, Enum
from sqlalchemy.orm import relationship

from ..database import Base
from .monitor import MonitorState


class PingResult(Base):
    """Immutable outcome of a single probe; only the newest ones are retained."""

    __tablename__ = "ping_results"
    __table_args__ = (
        Index("ix_ping_results_monitor_timestamp", "monitor_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(String(32), ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    status = Column(
        Enum(
            MonitorState,
            name="ping_state",
            native_enum=False,
            values_callable=lambda states: [s.value for s in states],
        ),
        nullable=False,
    )
    response_time = Column(Integer, nullable=True)  # NULL if the probe timed out
    timestamp = Column(DateTime(timezone=True), nullable=False)

    # Relationship
    monitor = relationship("Monitor", back_populates="ping_results")
