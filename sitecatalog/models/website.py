"""
Website model — one row per catalog record, reconciled by external_id.
"""
from sqlalchemy import (
    Column, Integer, BigInteger, Float, Text, Boolean, DateTime, JSON,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from sitecatalog.database import Base


class Website(Base):
    __tablename__ = 'catalog_entries'

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(Text, nullable=False)          # source record id, never changes
    domain = Column(Text, nullable=False)
    domain_rating = Column(Integer, nullable=True)
    total_traffic = Column(BigInteger, nullable=True)
    guest_post_cost = Column(Float, nullable=True)
    categories = Column(JSON, nullable=False, default=list)
    website_type = Column(JSON, nullable=False, default=list)
    niche = Column(JSON, nullable=False, default=list)
    has_guest_post = Column(Boolean, nullable=False, default=False)
    has_link_insert = Column(Boolean, nullable=False, default=False)
    status = Column(Text, nullable=False, default='Unknown')
    overall_quality = Column(Text, nullable=True)
    published_opportunities = Column(Integer, nullable=False, default=0)
    external_created_at = Column(DateTime(timezone=True), nullable=True)
    external_updated_at = Column(DateTime(timezone=True), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    contacts = relationship(
        'WebsiteContact',
        back_populates='website',
        cascade='all, delete-orphan',
        passive_deletes=True,
        order_by='WebsiteContact.id',
    )

    __table_args__ = (
        UniqueConstraint('external_id', name='uq_catalog_entries_external_id'),
        Index('ix_catalog_entries_domain', 'domain'),
        Index('ix_catalog_entries_domain_rating', 'domain_rating'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'external_id': self.external_id,
            'domain': self.domain,
            'domain_rating': self.domain_rating,
            'total_traffic': self.total_traffic,
            'guest_post_cost': self.guest_post_cost,
            'categories': self.categories or [],
            'website_type': self.website_type or [],
            'niche': self.niche or [],
            'has_guest_post': bool(self.has_guest_post),
            'has_link_insert': bool(self.has_link_insert),
            'status': self.status,
            'overall_quality': self.overall_quality,
            'published_opportunities': self.published_opportunities or 0,
            'external_created_at': _iso(self.external_created_at),
            'external_updated_at': _iso(self.external_updated_at),
            'last_synced_at': _iso(self.last_synced_at),
        }


def _iso(value):
    return value.isoformat() if value else None
