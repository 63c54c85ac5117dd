"""
Catalog source API client — paginated website records + contact extraction.

Pure read: fetch_page() issues one GET, normalizes the records and returns the
source's pagination cursor. Records that fail normalization are reported on
the page as failures instead of raising. It never retries; backoff and rate-limit pacing
belong to the sync orchestrator.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urlparse

import requests

from sitecatalog.config import (
    CATALOG_API_URL, CATALOG_API_KEY, CATALOG_BASE_ID,
    CATALOG_TABLE_ID, CATALOG_VIEW_ID, CATALOG_REQUEST_TIMEOUT,
)
from sitecatalog.services.formula import build_filter_formula

logger = logging.getLogger('services.catalog_source')

# The source caps every page at 100 records whatever pageSize asks for.
MAX_PAGE_SIZE = 100

FIELDS = [
    'Website',
    'Domain Rating',
    'Total Traffic',
    'Guest Post Cost V2',
    'Category',
    'Type',
    'Niche',
    'Status',
    'Guest Post Access?',
    'Link Insert Access?',
    'Count of Published Opportunities',
    'Overall Website Quality',
    # Contact lookup fields (parallel arrays, one entry per linked contact)
    'PostFlow Contact Emails',
    'PostFlow Guest Post Prices',
    'PostFlow Blogger Requirements',
    'PostFlow Contact Status',
]


class CatalogSourceError(Exception):
    """Source misconfigured or answered with a non-2xx response."""
    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)


class MalformedRecordError(ValueError):
    """One source record that cannot be normalized; the rest of the page is unaffected."""


@dataclass
class ContactInfo:
    email: str
    is_primary: bool = False
    has_paid_guest_post: bool = False
    has_swap_option: bool = False
    guest_post_cost: Optional[float] = None
    link_insert_cost: Optional[float] = None
    requirement: Optional[str] = None
    status: Optional[str] = None


@dataclass
class CatalogRecord:
    """One source record after normalization."""
    external_id: str
    domain: str
    domain_rating: Optional[int] = None
    total_traffic: Optional[int] = None
    guest_post_cost: Optional[float] = None
    categories: List[str] = field(default_factory=list)
    website_type: List[str] = field(default_factory=list)
    niche: List[str] = field(default_factory=list)
    has_guest_post: bool = False
    has_link_insert: bool = False
    status: str = 'Unknown'
    overall_quality: Optional[str] = None
    published_opportunities: int = 0
    external_created_at: Optional[datetime] = None
    contacts: List[ContactInfo] = field(default_factory=list)


@dataclass
class RecordFailure:
    external_id: Optional[str]
    message: str


@dataclass
class CatalogPage:
    records: List[CatalogRecord]
    has_more: bool = False
    next_cursor: Optional[str] = None
    failures: List[RecordFailure] = field(default_factory=list)


# ── Normalization ────────────────────────────────────────────────────────────

def extract_domain(website) -> str:
    """Hostname of an absolute URL; any other string passes through, non-strings give ''."""
    if not isinstance(website, str):
        return ''
    website = website.strip()
    try:
        parsed = urlparse(website)
    except ValueError:
        return website
    if parsed.scheme and parsed.hostname:
        return parsed.hostname
    return website


def _as_list(value) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _string_list(value) -> List[str]:
    return [str(v) for v in _as_list(value) if v is not None and v != '']


def _number(value, name, cast=int):
    """Missing, blank or zero → None; anything non-numeric raises MalformedRecordError."""
    if not value or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return cast(value) or None
    if isinstance(value, str):
        try:
            return cast(float(value.replace(',', ''))) or None
        except ValueError:
            pass
    raise MalformedRecordError(f'{name} is not a number: {value!r}')


def _text(value, name) -> Optional[str]:
    # Lookup fields arrive as single-element lists
    if isinstance(value, (list, tuple)):
        value = next((v for v in value if v), None)
    if value is None or value == '':
        return None
    if not isinstance(value, str):
        raise MalformedRecordError(f'{name} is not text: {value!r}')
    return value


def _parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        logger.warning("Unparseable source timestamp: %r", value)
        return None


def _quality(value) -> Optional[str]:
    if value is None or value == '':
        return None
    if isinstance(value, (list, tuple)):
        return ', '.join(str(v) for v in value if v is not None) or None
    return str(value)


def extract_contacts(fields: Dict[str, Any]) -> List[ContactInfo]:
    """
    Zip the contact lookup arrays into ContactInfo objects, in source order.

    Only usable contacts survive: the email must be a real address (not blank,
    not an unresolved linked-record id), the contact status must be Active, and
    the contact must offer either a paid post with a price above 0 or a swap.
    The first survivor is provisionally primary; reconciliation re-derives the
    flag after deduplication.
    """
    emails = _as_list(fields.get('PostFlow Contact Emails'))
    prices = _as_list(fields.get('PostFlow Guest Post Prices'))
    requirements = _as_list(fields.get('PostFlow Blogger Requirements'))
    statuses = _as_list(fields.get('PostFlow Contact Status'))

    contacts = []
    for i, raw_email in enumerate(emails):
        if not raw_email or not isinstance(raw_email, str):
            continue
        email = raw_email.strip().lower()
        if not email or email.startswith('rec'):
            continue

        status = statuses[i] if i < len(statuses) else None
        if status != 'Active':
            continue

        price = prices[i] if i < len(prices) else None
        requirement = requirements[i] if i < len(requirements) else None
        cost = float(price) if isinstance(price, (int, float)) and not isinstance(price, bool) else None
        is_paid = requirement == 'Paid' and bool(cost and cost > 0)
        is_swap = requirement == 'Swap'
        if not is_paid and not is_swap:
            continue

        contacts.append(ContactInfo(
            email=email,
            is_primary=not contacts,
            has_paid_guest_post=is_paid,
            has_swap_option=is_swap,
            guest_post_cost=cost or None,
            requirement=requirement,
            status=status,
        ))
    return contacts


def normalize_record(raw: Dict[str, Any]) -> CatalogRecord:
    """Raw source record ({id, createdTime, fields}) → CatalogRecord. Raises MalformedRecordError."""
    if not isinstance(raw, dict):
        raise MalformedRecordError(f'record is not an object: {type(raw).__name__}')
    external_id = raw.get('id')
    if not external_id or not isinstance(external_id, str):
        raise MalformedRecordError(f'record has no usable id: {external_id!r}')
    fields = raw.get('fields') or {}
    if not isinstance(fields, dict):
        raise MalformedRecordError(f'{external_id}: fields is not an object')

    website = fields.get('Website')
    if website is not None and not isinstance(website, str):
        raise MalformedRecordError(f'{external_id}: Website is not text: {website!r}')

    return CatalogRecord(
        external_id=external_id,
        domain=extract_domain(website),
        domain_rating=_number(fields.get('Domain Rating'), 'Domain Rating'),
        total_traffic=_number(fields.get('Total Traffic'), 'Total Traffic'),
        guest_post_cost=_number(fields.get('Guest Post Cost V2'), 'Guest Post Cost V2', float),
        categories=_string_list(fields.get('Category')),
        website_type=_string_list(fields.get('Type')),
        niche=_string_list(fields.get('Niche')),
        has_guest_post=fields.get('Guest Post Access?') == 'Yes',
        has_link_insert=fields.get('Link Insert Access?') == 'Yes',
        status=_text(fields.get('Status'), 'Status') or 'Unknown',
        overall_quality=_quality(fields.get('Overall Website Quality')),
        published_opportunities=_number(fields.get('Count of Published Opportunities'),
                                        'Count of Published Opportunities') or 0,
        external_created_at=_parse_timestamp(raw.get('createdTime')),
        contacts=extract_contacts(fields),
    )


# ── Client ───────────────────────────────────────────────────────────────────

def _error_message(response) -> str:
    """Pull the source's own error message out of a failed response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500] or response.reason or f'HTTP {response.status_code}'
    error = payload.get('error') if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return error.get('message') or error.get('type') or response.reason
    if isinstance(error, str):
        return error
    return response.reason or f'HTTP {response.status_code}'


class CatalogSourceClient:
    """
    Client for the website table of the catalog source.

    Usage:
        client = CatalogSourceClient(breaker=breakers['catalog_source'])
        page = client.fetch_page(cursor=None)
        while page.has_more:
            page = client.fetch_page(cursor=page.next_cursor)
    """

    def __init__(self, api_key=None, base_id=None, table_id=None, view_id=None,
                 api_url=None, timeout=None, breaker=None, http=None):
        self.api_key = api_key or CATALOG_API_KEY
        self.base_id = base_id or CATALOG_BASE_ID
        self.table_id = table_id or CATALOG_TABLE_ID
        self.view_id = view_id if view_id is not None else CATALOG_VIEW_ID
        self.api_url = (api_url or CATALOG_API_URL).rstrip('/')
        self.timeout = timeout or CATALOG_REQUEST_TIMEOUT
        self.breaker = breaker
        self.http = http or requests

    def _headers(self):
        if not self.api_key:
            raise CatalogSourceError('Catalog source API key not configured')
        if not self.base_id:
            raise CatalogSourceError('Catalog source base id not configured')
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }

    @property
    def table_url(self):
        return f'{self.api_url}/{self.base_id}/{self.table_id}'

    def _params(self, filters, page_size, cursor):
        params = [('pageSize', str(max(1, min(int(page_size), MAX_PAGE_SIZE))))]
        if self.view_id:
            params.append(('view', self.view_id))
        if cursor:
            params.append(('offset', cursor))
        params.extend(('fields[]', name) for name in FIELDS)
        formula = build_filter_formula(filters)
        if formula:
            params.append(('filterByFormula', formula))
        return params

    def _get(self, params):
        headers = self._headers()
        if self.breaker is not None:
            return self.breaker.call(self.http.get, self.table_url, params=params,
                                     headers=headers, timeout=self.timeout)
        return self.http.get(self.table_url, params=params, headers=headers, timeout=self.timeout)

    def fetch_page(self, filters=None, page_size=MAX_PAGE_SIZE, cursor=None) -> CatalogPage:
        """Fetch and normalize one page of records."""
        params = self._params(filters, page_size, cursor)
        logger.debug("Fetching catalog page (cursor=%s, filtered=%s)", cursor or 'none',
                     any(k == 'filterByFormula' for k, _ in params))

        response = self._get(params)
        if not response.ok:
            message = _error_message(response)
            logger.error("Catalog source error %d: %s", response.status_code, message)
            raise CatalogSourceError(f'Catalog source error: {message}', status_code=response.status_code)

        data = response.json()
        raw_records = data.get('records') or []
        next_cursor = data.get('offset')
        logger.info("Fetched %d catalog records (more=%s)", len(raw_records), bool(next_cursor))

        page = CatalogPage(records=[], has_more=bool(next_cursor), next_cursor=next_cursor)
        for raw in raw_records:
            try:
                page.records.append(normalize_record(raw))
            except Exception as e:
                external_id = raw.get('id') if isinstance(raw, dict) else None
                logger.warning("Skipping malformed catalog record %s: %s", external_id, e)
                page.failures.append(RecordFailure(external_id=external_id, message=str(e)))
        return page

    def iter_pages(self, filters=None, page_size=MAX_PAGE_SIZE) -> Iterator[CatalogPage]:
        """Yield every page of a (filtered) view, one request at a time."""
        cursor = None
        while True:
            page = self.fetch_page(filters=filters, page_size=page_size, cursor=cursor)
            yield page
            if not page.has_more:
                return
            cursor = page.next_cursor
