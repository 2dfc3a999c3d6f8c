"""Monitor model - endpoints being probed."""
import enum
import uuid

from sqlalchemy import Column, Integer, String, DateTime, Enum
from sqlalchemy.orm import relationship

from ..database import Base


class MonitorState(str, enum.Enum):
    """Current classification of a monitor."""

    CHECKING = "checking"  # never checked yet
    UP = "up"
    DOWN = "down"


def _new_monitor_id() -> str:
    return uuid.uuid4().hex


class Monitor(Base):
    """A registered website URL that the scheduler probes every ``interval`` minutes."""

    __tablename__ = "monitors"

    id = Column(String(32), primary_key=True, default=_new_monitor_id)
    name = Column(String(100), nullable=False)
    url = Column(String, nullable=False, unique=True)
    interval = Column(Integer, nullable=False, default=5)  # minutes, 1-60
    status = Column(
        Enum(
            MonitorState,
            name="monitor_state",
            native_enum=False,
            values_callable=lambda states: [s.value for s in states],
        ),
        nullable=False,
        default=MonitorState.CHECKING,
    )
    last_checked = Column(DateTime(timezone=True), nullable=True)  # NULL = never checked
    response_time = Column(Integer, nullable=True)  # ms
    uptime_percentage = Column(Integer, nullable=False, default=100)
    total_checks = Column(Integer, nullable=False, default=0)
    successful_checks = Column(Integer, nullable=False, default=0)
    password_hash = Column(String, nullable=False)  # bcrypt; authorizes deletion

    # Relationships
    ping_results = relationship(
        "PingResult",
        back_populates="monitor",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PingResult.timestamp",
    )
