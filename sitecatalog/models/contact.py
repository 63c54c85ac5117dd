"""
WebsiteContact model — contact set owned by one Website.

Rebuilt wholesale on every sync of the parent (delete-all, insert survivors).
"""
from sqlalchemy import Column, Integer, Float, Text, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from sitecatalog.database import Base


class WebsiteContact(Base):
    __tablename__ = 'contact_records'

    id = Column(Integer, primary_key=True, autoincrement=True)
    website_id = Column(Integer, ForeignKey('catalog_entries.id', ondelete='CASCADE'), nullable=False, index=True)
    email = Column(Text, nullable=False)
    is_primary = Column(Boolean, nullable=False, default=False)
    has_paid_guest_post = Column(Boolean, nullable=False, default=False)
    has_swap_option = Column(Boolean, nullable=False, default=False)
    guest_post_cost = Column(Float, nullable=True)
    link_insert_cost = Column(Float, nullable=True)
    requirement = Column(Text, nullable=True)   # Paid / Swap / ...
    status = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    website = relationship('Website', back_populates='contacts')

    __table_args__ = (
        UniqueConstraint('website_id', 'email', name='uq_contact_records_website_email'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'is_primary': bool(self.is_primary),
            'has_paid_guest_post': bool(self.has_paid_guest_post),
            'has_swap_option': bool(self.has_swap_option),
            'guest_post_cost': self.guest_post_cost,
            'link_insert_cost': self.link_insert_cost,
            'requirement': self.requirement,
            'status': self.status,
        }
