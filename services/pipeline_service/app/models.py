"""
Lead and quote models for the pipeline store.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base
from .stages import Stage


class Lead(Base):
    """A sales prospect and its current pipeline stage."""

    __tablename__ = "leads"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_name = Column(String(255), nullable=False, index=True)
    phone = Column(String(50), nullable=False, index=True)
    job_description = Column(Text, nullable=True)
    source = Column(String(50), nullable=True)
    segment = Column(String(50), nullable=True)
    # Plain string, not a DB enum: rows with unknown values are quarantined on read
    stage = Column(String(32), default=Stage.NEW_LEAD.value, nullable=True, index=True)
    stage_updated_at = Column(DateTime, default=datetime.utcnow, nullable=True)
    last_inbound_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    quote = relationship("Quote", back_populates="lead", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Lead(id={self.id}, name='{self.customer_name}', stage='{self.stage}')>"


class Quote(Base):
    """Metadata of the quote experience a lead was shown."""

    __tablename__ = "quotes"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    lead_id = Column(
        UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    slug = Column(String(64), nullable=True, unique=True)
    quote_mode = Column(String(20), nullable=False, default="hhh")
    segment = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lead = relationship("Lead", back_populates="quote")

    def __repr__(self):
        return f"<Quote(id={self.id}, lead_id={self.lead_id}, mode='{self.quote_mode}')>"
