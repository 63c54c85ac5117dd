"""
Reconciliation — merge one normalized catalog record into the local store.

Each record gets its own transaction:
  1. upsert the website row by external_id (every mutable column overwritten)
  2. delete the website's contacts
  3. dedup the incoming contacts by email (dedup_contacts)
  4. insert the survivors; the first one becomes the only primary contact

A failure anywhere rolls back that record only and propagates to the caller.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import delete, select

from sitecatalog.database import upsert_insert
from sitecatalog.models.contact import WebsiteContact
from sitecatalog.models.website import Website
from sitecatalog.services.catalog_source import CatalogRecord, ContactInfo

logger = logging.getLogger('services.reconcile')

# Columns the source owns; all of them are overwritten on every sync.
MUTABLE_COLUMNS = (
    'domain',
    'domain_rating',
    'total_traffic',
    'guest_post_cost',
    'categories',
    'website_type',
    'niche',
    'has_guest_post',
    'has_link_insert',
    'status',
    'overall_quality',
    'published_opportunities',
    'external_created_at',
    'external_updated_at',
    'last_synced_at',
    'updated_at',
)


def _prefer(candidate: ContactInfo, current: ContactInfo) -> bool:
    """True when candidate should replace current for the same email."""
    if bool(candidate.is_primary) != bool(current.is_primary):
        return bool(candidate.is_primary)
    if candidate.guest_post_cost is None:
        return False
    if current.guest_post_cost is None:
        return True
    return candidate.guest_post_cost < current.guest_post_cost


def dedup_contacts(contacts: Iterable[ContactInfo]) -> List[ContactInfo]:
    """
    Collapse contacts sharing an email into one.

    Tie-break, in order: the primary one wins; otherwise the lower non-null
    guest-post cost wins; otherwise the first seen stays. The survivor takes
    the list position of the email's first appearance.
    """
    kept = {}
    for contact in contacts:
        existing = kept.get(contact.email)
        if existing is None or _prefer(contact, existing):
            kept[contact.email] = contact
    return list(kept.values())


def website_values(record: CatalogRecord, now: datetime) -> dict:
    return {
        'external_id': record.external_id,
        'domain': record.domain,
        'domain_rating': record.domain_rating,
        'total_traffic': record.total_traffic,
        'guest_post_cost': record.guest_post_cost,
        'categories': list(record.categories or []),
        'website_type': list(record.website_type or []),
        'niche': list(record.niche or []),
        'has_guest_post': bool(record.has_guest_post),
        'has_link_insert': bool(record.has_link_insert),
        'status': record.status,
        'overall_quality': record.overall_quality,
        'published_opportunities': record.published_opportunities or 0,
        'external_created_at': record.external_created_at,
        'external_updated_at': now,
        'last_synced_at': now,
        'updated_at': now,
    }


def upsert_website(session, record: CatalogRecord, now: datetime) -> int:
    """INSERT ... ON CONFLICT (external_id) DO UPDATE; returns the website id."""
    stmt = upsert_insert(session, Website).values(**website_values(record, now))
    stmt = stmt.on_conflict_do_update(
        index_elements=[Website.external_id],
        set_={col: stmt.excluded[col] for col in MUTABLE_COLUMNS},
    )
    session.execute(stmt)
    return session.execute(
        select(Website.id).where(Website.external_id == record.external_id)
    ).scalar_one()


def replace_contacts(session, website_id: int, contacts: Iterable[ContactInfo]) -> int:
    """Delete the existing contact set and insert the deduplicated survivors."""
    session.execute(delete(WebsiteContact).where(WebsiteContact.website_id == website_id))

    survivors = dedup_contacts(contacts)
    for position, contact in enumerate(survivors):
        session.add(WebsiteContact(
            website_id=website_id,
            email=contact.email,
            is_primary=position == 0,
            has_paid_guest_post=bool(contact.has_paid_guest_post),
            has_swap_option=bool(contact.has_swap_option),
            guest_post_cost=contact.guest_post_cost,
            link_insert_cost=contact.link_insert_cost,
            requirement=contact.requirement,
            status=contact.status,
        ))
    session.flush()
    return len(survivors)


def reconcile_entry(session_factory, record: CatalogRecord, now: Optional[datetime] = None) -> int:
    """Reconcile one record in its own transaction. Returns the website id."""
    if not record.external_id:
        raise ValueError('Catalog record has no external id')

    now = now or datetime.now(timezone.utc)
    session = session_factory()
    try:
        website_id = upsert_website(session, record, now)
        kept = replace_contacts(session, website_id, record.contacts)
        session.commit()
        logger.debug("Reconciled %s (%s): website %d, %d contacts",
                     record.external_id, record.domain, website_id, kept)
        return website_id
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def website_exists(session_factory, external_id: str) -> bool:
    session = session_factory()
    try:
        return session.execute(
            select(Website.id).where(Website.external_id == external_id)
        ).first() is not None
    finally:
        session.close()
