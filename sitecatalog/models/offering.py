"""
OfferingRelationship model — publisher ↔ website link owned by offering CRUD.

Read-only here: the search engine only counts/filters active rows.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func

from sitecatalog.database import Base


class OfferingRelationship(Base):
    __tablename__ = 'offering_relationships'

    id = Column(Integer, primary_key=True, autoincrement=True)
    website_id = Column(Integer, ForeignKey('catalog_entries.id'), nullable=False, index=True)
    publisher_id = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
