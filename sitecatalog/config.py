"""
Centralized configuration — env vars and sync/search constants.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')
DB_POOL_SIZE = int(os.getenv('DB_POOL_SIZE', '5'))
DB_MAX_OVERFLOW = int(os.getenv('DB_MAX_OVERFLOW', '10'))

# ── Catalog source (Airtable-style REST API) ─────────────────────────────────
CATALOG_API_URL = os.getenv('CATALOG_API_URL', 'https://api.airtable.com/v0')
CATALOG_API_KEY = os.getenv('CATALOG_API_KEY')
CATALOG_BASE_ID = os.getenv('CATALOG_BASE_ID')
CATALOG_TABLE_ID = os.getenv('CATALOG_TABLE_ID', 'tblT8P0fPHV5fdrT5')
CATALOG_VIEW_ID = os.getenv('CATALOG_VIEW_ID', 'viwWrgaGb55n8iaVk')
CATALOG_PAGE_SIZE = int(os.getenv('CATALOG_PAGE_SIZE', '100'))
CATALOG_REQUEST_TIMEOUT = float(os.getenv('CATALOG_REQUEST_TIMEOUT', '30'))

# Source allows 5 requests/second per base; one page every 200ms stays inside it.
SYNC_PAGE_DELAY_SECONDS = float(os.getenv('SYNC_PAGE_DELAY_SECONDS', '0.2'))
SYNC_MAX_PAGES = int(os.getenv('SYNC_MAX_PAGES', '200'))
SYNC_LOCK_TIMEOUT = int(os.getenv('SYNC_LOCK_TIMEOUT', '1800'))

# ── Search ───────────────────────────────────────────────────────────────────
SEARCH_STATEMENT_TIMEOUT_MS = int(os.getenv('SEARCH_STATEMENT_TIMEOUT_MS', '15000'))
SEARCH_DEFAULT_LIMIT = 50
SEARCH_MAX_LIMIT = 1000
