"""
Website search — open-ended filter object → count query + paginated fetch.

Every filter field is optional; the WHERE clause is the AND of only the
predicates whose fields are present. Predicates are SQLAlchemy expressions, so
every caller-supplied value reaches the database as a bound parameter. The
count query and the row query are built from the same predicate list and the
same join scope, which keeps `total` and `rows` in agreement.

Qualification filters need a client_id:
  - only_qualified   → INNER JOIN on the client's latest mark (gate)
  - only_unqualified → NOT EXISTS any mark for the client (project)
  - neither          → LEFT JOIN, annotation only (null when absent)

Multi-valued columns are JSON arrays; they are unnested with json_each on
SQLite and json_array_elements_text on Postgres.
"""
import json
import logging
from dataclasses import dataclass, field, fields as dc_fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, distinct, exists, func, literal, literal_column, or_, select

from sitecatalog.config import SEARCH_DEFAULT_LIMIT, SEARCH_MAX_LIMIT
from sitecatalog.database import dialect_name
from sitecatalog.models.contact import WebsiteContact
from sitecatalog.models.offering import OfferingRelationship
from sitecatalog.models.qualification import QualificationMark
from sitecatalog.models.website import Website
from sitecatalog.services.formula import STATUS_ANY

logger = logging.getLogger('services.search')

CONTACT_FIELDS = (
    'id', 'email', 'is_primary', 'has_paid_guest_post', 'has_swap_option',
    'guest_post_cost', 'link_insert_cost', 'requirement', 'status',
)


class SearchValidationError(ValueError):
    """Filter object rejected before any query is built."""


# ── Filter object ────────────────────────────────────────────────────────────

_NUMERIC_RANGES = [
    ('min_dr', 'max_dr', Website.domain_rating),
    ('min_traffic', 'max_traffic', Website.total_traffic),
    ('min_cost', 'max_cost', Website.guest_post_cost),
]

_TIMESTAMP_RANGES = [
    ('external_updated_after', 'external_updated_before', Website.external_updated_at),
    ('external_created_after', 'external_created_before', Website.external_created_at),
    ('last_synced_after', 'last_synced_before', Website.last_synced_at),
]

_OVERLAP_FILTERS = [
    ('categories', Website.categories),
    ('website_types', Website.website_type),
    ('niches', Website.niche),
]


@dataclass
class SearchFilters:
    search_term: Optional[str] = None
    min_dr: Optional[float] = None
    max_dr: Optional[float] = None
    min_traffic: Optional[float] = None
    max_traffic: Optional[float] = None
    min_cost: Optional[float] = None
    max_cost: Optional[float] = None
    status: Optional[str] = None
    has_guest_post: Optional[bool] = None
    has_link_insert: Optional[bool] = None
    categories: List[str] = field(default_factory=list)
    website_types: List[str] = field(default_factory=list)
    niches: List[str] = field(default_factory=list)
    has_offerings: Optional[bool] = None
    external_updated_after: Optional[datetime] = None
    external_updated_before: Optional[datetime] = None
    external_created_after: Optional[datetime] = None
    external_created_before: Optional[datetime] = None
    last_synced_after: Optional[datetime] = None
    last_synced_before: Optional[datetime] = None
    client_id: Optional[str] = None
    project_id: Optional[str] = None
    only_qualified: bool = False
    only_unqualified: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SearchFilters':
        """Parse a JSON-ish dict; blanks count as absent. Raises SearchValidationError."""
        data = data or {}
        known = {f.name for f in dc_fields(cls)}
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            raise SearchValidationError(f"Unknown filter fields: {', '.join(unknown)}")

        kwargs = {}
        for low, high, _ in _NUMERIC_RANGES:
            kwargs[low] = _number(data.get(low), low)
            kwargs[high] = _number(data.get(high), high)
        for after, before, _ in _TIMESTAMP_RANGES:
            kwargs[after] = _timestamp(data.get(after), after)
            kwargs[before] = _timestamp(data.get(before), before)
        for name, _ in _OVERLAP_FILTERS:
            kwargs[name] = _string_list(data.get(name), name)
        for name in ('has_guest_post', 'has_link_insert', 'has_offerings'):
            kwargs[name] = _flag(data.get(name), name)
        for name in ('search_term', 'status', 'client_id', 'project_id'):
            kwargs[name] = _text(data.get(name))
        if kwargs['status'] == STATUS_ANY:
            kwargs['status'] = None
        kwargs['only_qualified'] = bool(_flag(data.get('only_qualified'), 'only_qualified'))
        kwargs['only_unqualified'] = bool(_flag(data.get('only_unqualified'), 'only_unqualified'))

        filters = cls(**kwargs)
        filters.validate()
        return filters

    def validate(self):
        if self.only_qualified and self.only_unqualified:
            raise SearchValidationError('only_qualified and only_unqualified are mutually exclusive')
        if (self.only_qualified or self.only_unqualified) and not self.client_id:
            raise SearchValidationError('client_id is required for qualification filters')
        if self.project_id and not self.client_id:
            raise SearchValidationError('project_id requires client_id')
        for low, high, _ in _NUMERIC_RANGES + _TIMESTAMP_RANGES:
            lo, hi = getattr(self, low), getattr(self, high)
            if lo is not None and hi is not None and lo > hi:
                raise SearchValidationError(f'{low} must not exceed {high}')


def _number(value, name):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise SearchValidationError(f'{name} must be a number')
    try:
        return float(value)
    except (TypeError, ValueError):
        raise SearchValidationError(f'{name} must be a number')


def _timestamp(value, name):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            raise SearchValidationError(f'{name} must be an ISO-8601 timestamp')
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _string_list(value, name):
    if value is None or value == '':
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise SearchValidationError(f'{name} must be a list of strings')
    return [str(v) for v in value if v is not None and str(v) != '']


def _flag(value, name):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('true', 'false'):
        return value.lower() == 'true'
    raise SearchValidationError(f'{name} must be a boolean')


def _text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


# ── SQL building blocks ──────────────────────────────────────────────────────

def _json_elements(dialect, column):
    """Table-valued unnest of a JSON string array, exposing `.c.value`."""
    if dialect == 'postgresql':
        return func.json_array_elements_text(column).table_valued('value').render_derived()
    return func.json_each(column).table_valued('value')


def _array_overlaps(dialect, column, values):
    elements = _json_elements(dialect, column)
    return select(literal(1)).select_from(elements).where(elements.c.value.in_(values)).exists()


def _array_icontains(dialect, column, term):
    elements = _json_elements(dialect, column)
    return select(literal(1)).select_from(elements).where(
        elements.c.value.icontains(term, autoescape=True)
    ).exists()


def _active_offerings():
    return and_(
        OfferingRelationship.website_id == Website.id,
        OfferingRelationship.is_active.is_(True),
    )


def _mark_scope(filters: SearchFilters):
    clauses = [
        QualificationMark.website_id == Website.id,
        QualificationMark.client_id == filters.client_id,
    ]
    if filters.project_id:
        clauses.append(QualificationMark.project_id == filters.project_id)
    return clauses


def _latest_mark_id(filters: SearchFilters):
    """Id of the caller's most recent mark for the outer website row."""
    latest = QualificationMark.__table__.alias('latest_mark')
    clauses = [
        latest.c.website_id == Website.id,
        latest.c.client_id == filters.client_id,
    ]
    if filters.project_id:
        clauses.append(latest.c.project_id == filters.project_id)
    return (
        select(latest.c.id)
        .where(*clauses)
        .order_by(latest.c.qualified_at.desc(), latest.c.id.desc())
        .limit(1)
        .correlate(Website)
        .scalar_subquery()
    )


def build_predicates(filters: SearchFilters, dialect: str) -> list:
    """Every WHERE predicate implied by the present filter fields."""
    predicates = []

    for low, high, column in _NUMERIC_RANGES + _TIMESTAMP_RANGES:
        lo, hi = getattr(filters, low), getattr(filters, high)
        if lo is not None:
            predicates.append(column >= lo)
        if hi is not None:
            predicates.append(column <= hi)

    if filters.status is not None:
        predicates.append(Website.status == filters.status)
    if filters.has_guest_post is not None:
        predicates.append(Website.has_guest_post.is_(filters.has_guest_post))
    if filters.has_link_insert is not None:
        predicates.append(Website.has_link_insert.is_(filters.has_link_insert))

    for name, column in _OVERLAP_FILTERS:
        values = getattr(filters, name)
        if values:
            predicates.append(_array_overlaps(dialect, column, values))

    if filters.search_term:
        term = filters.search_term
        predicates.append(or_(
            Website.domain.icontains(term, autoescape=True),
            _array_icontains(dialect, Website.categories, term),
            _array_icontains(dialect, Website.niche, term),
        ))

    if filters.has_offerings is True:
        predicates.append(exists().where(_active_offerings()))
    elif filters.has_offerings is False:
        predicates.append(~exists().where(_active_offerings()))

    if filters.only_unqualified:
        predicates.append(~exists().where(*_mark_scope(filters)))

    return predicates


def apply_scope(stmt, filters: SearchFilters, dialect: str):
    """Qualification join (if any) + WHERE predicates, shared by both queries."""
    if filters.client_id and not filters.only_unqualified:
        on_clause = QualificationMark.id == _latest_mark_id(filters)
        if filters.only_qualified:
            stmt = stmt.join(QualificationMark, on_clause)
        else:
            stmt = stmt.outerjoin(QualificationMark, on_clause)
    predicates = build_predicates(filters, dialect)
    if predicates:
        stmt = stmt.where(*predicates)
    return stmt


def _contacts_json(dialect):
    """Aggregate of the joined contact rows as a JSON array of objects."""
    pairs = []
    for name in CONTACT_FIELDS:
        pairs += [literal_column(f"'{name}'"), getattr(WebsiteContact, name)]
    if dialect == 'postgresql':
        agg = func.json_agg(func.json_build_object(*pairs))
    else:
        agg = func.json_group_array(func.json_object(*pairs))
    return agg.filter(WebsiteContact.id.isnot(None))


def _offerings_count():
    return (
        select(func.count(OfferingRelationship.id))
        .where(_active_offerings())
        .correlate(Website)
        .scalar_subquery()
    )


# ── Result shaping ───────────────────────────────────────────────────────────

def _parse_contacts(raw) -> List[dict]:
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)):
        raw = json.loads(raw)
    contacts = []
    for item in raw or []:
        if not item or item.get('id') is None:
            continue
        contacts.append({
            'id': item['id'],
            'email': item.get('email'),
            'is_primary': bool(item.get('is_primary')),
            'has_paid_guest_post': bool(item.get('has_paid_guest_post')),
            'has_swap_option': bool(item.get('has_swap_option')),
            'guest_post_cost': item.get('guest_post_cost'),
            'link_insert_cost': item.get('link_insert_cost'),
            'requirement': item.get('requirement'),
            'status': item.get('status'),
        })
    contacts.sort(key=lambda c: c['id'])
    return contacts


def _qualification(row) -> Optional[dict]:
    if getattr(row, 'qualification_id', None) is None:
        return None
    return {
        'id': row.qualification_id,
        'project_id': row.qualification_project_id,
        'status': row.qualification_status,
        'notes': row.qualification_notes,
        'qualified_by': row.qualification_qualified_by,
        'qualified_at': row.qualification_qualified_at.isoformat() if row.qualification_qualified_at else None,
    }


@dataclass
class SearchResult:
    rows: List[Dict[str, Any]]
    total: int
    limit: int = SEARCH_DEFAULT_LIMIT
    offset: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.rows) < self.total

    def to_dict(self):
        return {'rows': self.rows, 'total': self.total, 'has_more': self.has_more}


# ── Engine ───────────────────────────────────────────────────────────────────

def validate_page(limit, offset):
    try:
        limit = int(SEARCH_DEFAULT_LIMIT if limit is None else limit)
        offset = int(0 if offset is None else offset)
    except (TypeError, ValueError):
        raise SearchValidationError('limit and offset must be integers')
    if not 1 <= limit <= SEARCH_MAX_LIMIT:
        raise SearchValidationError(f'limit must be between 1 and {SEARCH_MAX_LIMIT}')
    if offset < 0:
        raise SearchValidationError('offset must not be negative')
    return limit, offset


class WebsiteSearch:
    """
    Usage:
        engine = WebsiteSearch(session_factory)
        result = engine.search(SearchFilters.from_dict(payload), limit=50, offset=0)
    """

    def __init__(self, session_factory, statement_timeout_ms=None):
        self.session_factory = session_factory
        self.statement_timeout_ms = statement_timeout_ms

    def count_query(self, filters: SearchFilters, dialect: str):
        stmt = select(func.count(distinct(Website.id))).select_from(Website)
        return apply_scope(stmt, filters, dialect)

    def rows_query(self, filters: SearchFilters, dialect: str, limit: int, offset: int):
        columns = [
            Website,
            _contacts_json(dialect).label('contacts'),
            _offerings_count().label('offerings_count'),
        ]
        group_by = [Website.id]
        if filters.client_id and not filters.only_unqualified:
            columns += [
                QualificationMark.id.label('qualification_id'),
                QualificationMark.project_id.label('qualification_project_id'),
                QualificationMark.status.label('qualification_status'),
                QualificationMark.notes.label('qualification_notes'),
                QualificationMark.qualified_by.label('qualification_qualified_by'),
                QualificationMark.qualified_at.label('qualification_qualified_at'),
            ]
            group_by.append(QualificationMark.id)

        stmt = (
            select(*columns)
            .select_from(Website)
            .outerjoin(WebsiteContact, WebsiteContact.website_id == Website.id)
        )
        stmt = apply_scope(stmt, filters, dialect)
        return (
            stmt.group_by(*group_by)
            .order_by(Website.domain_rating.desc().nulls_last(), Website.id)
            .limit(limit)
            .offset(offset)
        )

    def _apply_timeout(self, session, dialect):
        if self.statement_timeout_ms and dialect == 'postgresql':
            session.execute(
                select(func.set_config('statement_timeout', str(int(self.statement_timeout_ms)), True))
            )

    def search(self, filters: SearchFilters, limit=SEARCH_DEFAULT_LIMIT, offset=0) -> SearchResult:
        filters.validate()
        limit, offset = validate_page(limit, offset)

        session = self.session_factory()
        try:
            dialect = dialect_name(session)
            self._apply_timeout(session, dialect)

            total = session.execute(self.count_query(filters, dialect)).scalar_one()
            result = session.execute(self.rows_query(filters, dialect, limit, offset))

            rows = []
            for row in result:
                item = row.Website.to_dict()
                item['contacts'] = _parse_contacts(row.contacts)
                item['offerings_count'] = int(row.offerings_count or 0)
                item['qualification'] = _qualification(row)
                rows.append(item)

            logger.debug("Search matched %d websites (returning %d at offset %d)", total, len(rows), offset)
            return SearchResult(rows=rows, total=int(total), limit=limit, offset=offset)
        finally:
            session.rollback()
            session.close()


# ── Catalog metadata ─────────────────────────────────────────────────────────

def filter_options(session_factory) -> Dict[str, Any]:
    """Distinct values and numeric bounds for building filter UIs."""
    session = session_factory()
    try:
        categories, types, niches = set(), set(), set()
        for cats, wtypes, nich in session.execute(
            select(Website.categories, Website.website_type, Website.niche)
        ):
            categories.update(cats or [])
            types.update(wtypes or [])
            niches.update(nich or [])

        statuses = session.execute(
            select(Website.status).distinct().where(Website.status.isnot(None))
        ).scalars().all()

        bounds = session.execute(select(
            func.min(Website.domain_rating), func.max(Website.domain_rating),
            func.min(Website.total_traffic), func.max(Website.total_traffic),
            func.min(Website.guest_post_cost), func.max(Website.guest_post_cost),
        )).one()

        return {
            'categories': sorted(categories),
            'website_types': sorted(types),
            'niches': sorted(niches),
            'statuses': sorted(statuses),
            'domain_rating': {'min': bounds[0], 'max': bounds[1]},
            'total_traffic': {'min': bounds[2], 'max': bounds[3]},
            'guest_post_cost': {'min': bounds[4], 'max': bounds[5]},
        }
    finally:
        session.close()


def list_categories(session_factory) -> List[str]:
    return filter_options(session_factory)['categories']


def get_website(session_factory, website_id, client_id=None) -> Optional[Dict[str, Any]]:
    """Single website with contacts, active offerings count and marks."""
    session = session_factory()
    try:
        website = session.get(Website, website_id)
        if website is None:
            return None
        item = website.to_dict()
        item['contacts'] = [c.to_dict() for c in website.contacts]
        item['offerings_count'] = session.execute(
            select(func.count(OfferingRelationship.id)).where(
                OfferingRelationship.website_id == website.id,
                OfferingRelationship.is_active.is_(True),
            )
        ).scalar_one()
        marks = session.query(QualificationMark).filter(QualificationMark.website_id == website.id)
        if client_id:
            marks = marks.filter(QualificationMark.client_id == str(client_id))
        item['qualifications'] = [m.to_dict() for m in marks.order_by(QualificationMark.qualified_at.desc())]
        return item
    finally:
        session.close()
