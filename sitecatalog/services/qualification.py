"""
Qualification ledger — per-(website, client, project) "qualified" marks.

qualify() is all-or-nothing: every mark of one call is written in a single
transaction, and nothing is written if any website id is unknown.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select

from sitecatalog.database import upsert_insert
from sitecatalog.models.qualification import QualificationMark
from sitecatalog.models.website import Website

logger = logging.getLogger('services.qualification')

DEFAULT_STATUS = 'qualified'


class QualificationError(ValueError):
    """Invalid qualify request; nothing was written."""


def _normalize_ids(website_ids: Iterable) -> List[int]:
    ids = []
    for raw in website_ids or []:
        try:
            website_id = int(raw)
        except (TypeError, ValueError):
            raise QualificationError(f"Invalid website id: {raw!r}")
        if website_id not in ids:
            ids.append(website_id)
    return ids


def _upsert_mark(session, website_id, client_id, project_id, actor_id, notes, status, now):
    values = {
        'website_id': website_id,
        'client_id': client_id,
        'project_id': project_id,
        'status': status,
        'notes': notes,
        'qualified_by': actor_id,
        'qualified_at': now,
    }
    stmt = upsert_insert(session, QualificationMark).values(**values)
    if project_id is None:
        target = dict(
            index_elements=[QualificationMark.website_id, QualificationMark.client_id],
            index_where=QualificationMark.project_id.is_(None),
        )
    else:
        target = dict(
            index_elements=[QualificationMark.website_id, QualificationMark.client_id, QualificationMark.project_id],
            index_where=QualificationMark.project_id.isnot(None),
        )
    stmt = stmt.on_conflict_do_update(
        set_={
            'status': stmt.excluded.status,
            'notes': stmt.excluded.notes,
            'qualified_by': stmt.excluded.qualified_by,
            'qualified_at': stmt.excluded.qualified_at,
        },
        **target,
    )
    session.execute(stmt)


def qualify(session_factory, website_ids, client_id, project_id=None, actor_id=None,
            notes=None, status=DEFAULT_STATUS) -> int:
    """
    Mark websites as qualified for a client (and optionally a project).

    Re-qualifying overwrites status, notes, qualified_by and the timestamp.
    Returns the number of marks written.
    """
    ids = _normalize_ids(website_ids)
    if not ids:
        raise QualificationError('website_ids is required')
    if not client_id:
        raise QualificationError('client_id is required')
    if not actor_id:
        raise QualificationError('actor_id is required')
    project_id = project_id or None
    status = status or DEFAULT_STATUS

    now = datetime.now(timezone.utc)
    session = session_factory()
    try:
        found = set(session.execute(select(Website.id).where(Website.id.in_(ids))).scalars())
        missing = [i for i in ids if i not in found]
        if missing:
            raise QualificationError(f"Unknown website ids: {missing}")

        for website_id in ids:
            _upsert_mark(session, website_id, str(client_id), project_id and str(project_id),
                         str(actor_id), notes, status, now)

        session.commit()
        logger.info("Qualified %d websites for client %s (project=%s) by %s",
                    len(ids), client_id, project_id or '-', actor_id, extra={'client_id': client_id})
        return len(ids)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def list_qualifications(session_factory, website_id, client_id: Optional[str] = None) -> List[dict]:
    """All marks for a website, newest first."""
    session = session_factory()
    try:
        query = (
            session.query(QualificationMark)
            .filter(QualificationMark.website_id == website_id)
            .order_by(QualificationMark.qualified_at.desc(), QualificationMark.id.desc())
        )
        if client_id:
            query = query.filter(QualificationMark.client_id == str(client_id))
        return [mark.to_dict() for mark in query.all()]
    finally:
        session.close()
