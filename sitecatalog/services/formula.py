"""
Filter formula builder — abstract filter dict → catalog source formula string.

The source evaluates `filterByFormula` in its own spreadsheet formula
language. Each present filter field emits one sub-expression; all of them are
wrapped in AND(...). Fields that are None emit nothing, and an empty filter
produces '' (the reader then sends no formula at all, i.e. every record).

Free text goes into double-quoted string literals with only `\\` and `"`
backslash-escaped. The formula language has no parameter binding, so any
other meta-characters in search terms or category names reach the source as
typed. That is a known limitation of the external language; the local SQL
search path never builds queries this way.
"""
from typing import Any, Dict, List, Optional

# Source column names
FIELD_WEBSITE = 'Website'
FIELD_DOMAIN_RATING = 'Domain Rating'
FIELD_TOTAL_TRAFFIC = 'Total Traffic'
FIELD_GUEST_POST_COST = 'Guest Post Cost V2'
FIELD_STATUS = 'Status'
FIELD_GUEST_POST_ACCESS = 'Guest Post Access?'
FIELD_LINK_INSERT_ACCESS = 'Link Insert Access?'
FIELD_CATEGORY = 'Category'

# (filter key, source field, operator)
_RANGE_FILTERS = [
    ('min_dr', FIELD_DOMAIN_RATING, '>='),
    ('max_dr', FIELD_DOMAIN_RATING, '<='),
    ('min_traffic', FIELD_TOTAL_TRAFFIC, '>='),
    ('max_traffic', FIELD_TOTAL_TRAFFIC, '<='),
    ('min_cost', FIELD_GUEST_POST_COST, '>='),
    ('max_cost', FIELD_GUEST_POST_COST, '<='),
]

_FLAG_FILTERS = [
    ('has_guest_post', FIELD_GUEST_POST_ACCESS),
    ('has_link_insert', FIELD_LINK_INSERT_ACCESS),
]

# UI sentinel meaning "no status filter"
STATUS_ANY = 'All'


def quote(value: Any) -> str:
    """Minimal quoting for a formula string literal."""
    text = str(value).replace('\\', '\\\\').replace('"', '\\"')
    return f'"{text}"'


def _number(value) -> str:
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    num = float(value)
    return str(int(num)) if num.is_integer() else repr(num)


def build_conditions(filters: Optional[Dict[str, Any]]) -> List[str]:
    """One formula sub-expression per present filter field, in a stable order."""
    filters = filters or {}
    conditions = []

    for key, field, op in _RANGE_FILTERS:
        value = filters.get(key)
        if value is not None:
            conditions.append(f'{{{field}}} {op} {_number(value)}')

    status = filters.get('status')
    if status is not None and status != STATUS_ANY:
        conditions.append(f'{{{FIELD_STATUS}}} = {quote(status)}')

    for key, field in _FLAG_FILTERS:
        value = filters.get(key)
        if value is True:
            conditions.append(f"{{{field}}} = 'Yes'")
        elif value is False:
            conditions.append(f"{{{field}}} != 'Yes'")

    search_term = filters.get('search_term')
    if search_term is not None and search_term != '':
        conditions.append(f'SEARCH({quote(search_term)}, {{{FIELD_WEBSITE}}})')

    categories = filters.get('categories')
    if categories:
        matches = [
            f'FIND({quote(cat)}, ARRAYJOIN({{{FIELD_CATEGORY}}}, ",")) > 0'
            for cat in categories
        ]
        conditions.append(f"OR({', '.join(matches)})")

    return conditions


def build_filter_formula(filters: Optional[Dict[str, Any]]) -> str:
    """AND of all present conditions, or '' when nothing narrows the view."""
    conditions = build_conditions(filters)
    if not conditions:
        return ''
    return f"AND({', '.join(conditions)})"
