"""
SyncRun model — audit row bracketing one full catalog sync.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime
from sqlalchemy.sql import func

from sitecatalog.database import Base


class SyncRun(Base):
    __tablename__ = 'sync_runs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    sync_type = Column(Text, nullable=False, default='catalog')
    action = Column(Text, nullable=False, default='full_sync')
    status = Column(Text, nullable=False, default='in_progress')  # in_progress/success/failed
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    records_processed = Column(Integer, default=0)
    records_created = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    pages_fetched = Column(Integer, default=0)
    truncated = Column(Boolean, default=False)
    error = Column(Text, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'sync_type': self.sync_type,
            'action': self.action,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'records_processed': self.records_processed or 0,
            'records_created': self.records_created or 0,
            'records_updated': self.records_updated or 0,
            'records_failed': self.records_failed or 0,
            'pages_fetched': self.pages_fetched or 0,
            'truncated': bool(self.truncated),
            'error': self.error,
        }
