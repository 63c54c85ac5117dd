"""
QualificationMark model — one row per (website, client, project).

project_id is nullable and NULLs never collide in a plain unique constraint,
so uniqueness is two partial unique indexes: one for marks with a project and
one for client-wide marks. Upserts target whichever matches.
"""
from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey, Index
from sqlalchemy.sql import func

from sitecatalog.database import Base


class QualificationMark(Base):
    __tablename__ = 'qualification_marks'

    id = Column(Integer, primary_key=True, autoincrement=True)
    website_id = Column(Integer, ForeignKey('catalog_entries.id'), nullable=False)
    client_id = Column(Text, nullable=False)
    project_id = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default='qualified')
    notes = Column(Text, nullable=True)
    qualified_by = Column(Text, nullable=False)
    qualified_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index(
            'uq_qualification_marks_project',
            'website_id', 'client_id', 'project_id',
            unique=True,
            postgresql_where=project_id.isnot(None),
            sqlite_where=project_id.isnot(None),
        ),
        Index(
            'uq_qualification_marks_client',
            'website_id', 'client_id',
            unique=True,
            postgresql_where=project_id.is_(None),
            sqlite_where=project_id.is_(None),
        ),
        Index('ix_qualification_marks_client', 'client_id'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'website_id': self.website_id,
            'client_id': self.client_id,
            'project_id': self.project_id,
            'status': self.status,
            'notes': self.notes,
            'qualified_by': self.qualified_by,
            'qualified_at': self.qualified_at.isoformat() if self.qualified_at else None,
        }
