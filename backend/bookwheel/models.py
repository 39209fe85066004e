from sqlalchemy import Column, String, Integer, DateTime, JSON, UniqueConstraint
from datetime import datetime
from bookwheel.database import Base


class UserStateEntry(Base):
    """One key/value entry of a user's (or device's) carousel state."""
    __tablename__ = "user_state_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    namespace = Column(String, nullable=False, index=True)  # One per user/device
    key = Column(String, nullable=False)  # e.g. "wishlist", "not-interested", "history"
    value = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("namespace", "key", name="uq_user_state_namespace_key"),
    )


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    namespace = Column(String, nullable=True, index=True)
    carousel_id = Column(String, nullable=True, index=True)
    event_name = Column(String, nullable=False, index=True)
    properties = Column(JSON, nullable=True)
