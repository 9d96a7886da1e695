"""Database models."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CallLog(Base):
    """Call history row. Written once, never updated."""

    __tablename__ = "call_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    call_id = Column(String, index=True, nullable=True)
    to_number = Column(String, nullable=False)
    duration = Column(Integer, default=0, nullable=False)
    call_type = Column(String, default="voice", nullable=False)  # voice, video
    status = Column(String, nullable=False)  # completed, failed, pstn_initiated
    transport = Column(String, default="internet", nullable=False)  # internet, pstn
    timestamp = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)
