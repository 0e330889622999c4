"""Persisted document snapshot: scalar columns plus JSON for signers, fields and signatures."""
from sqlalchemy import Column, Integer, String, Float, DateTime, JSON

from signflow.database import Base


class DocumentRecord(Base):
    __tablename__ = "documents"

    id = Column(String(32), primary_key=True)
    name = Column(String(255), nullable=False)
    owner = Column(String(255), nullable=False, index=True)
    size = Column(Integer, nullable=False, default=0)

    # draft | pending | signed | rejected | completed
    status = Column(String(20), nullable=False, index=True)

    # Supplied by the rendering collaborator
    page_count = Column(Integer, nullable=False)
    page_width = Column(Float, nullable=False)
    page_height = Column(Float, nullable=False)

    public_link = Column(String(500), nullable=True)

    signers = Column(JSON, nullable=False, default=list)
    fields = Column(JSON, nullable=False, default=list)
    signatures = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
