"""
Redis-backed circuit breaker for the catalog source API.

States:
  - CLOSED    → requests pass through
  - OPEN      → too many consecutive failures; calls raise CircuitOpenError
  - HALF_OPEN → reset_timeout elapsed; the next call is a probe

Failure counts and success/failure totals live in Redis so every worker
process (web, CLI sync) sees the same state. If Redis itself is unreachable
the breaker stays CLOSED and only logs.
"""
import logging
import time

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is OPEN — service unavailable")


class CircuitBreaker:
    """
    Usage:
        cb = CircuitBreaker('catalog_source', redis_client, failure_threshold=3)
        response = cb.call(requests.get, url, timeout=30)
    """

    PREFIX = 'cb'

    def __init__(self, name, redis_client, failure_threshold=3, reset_timeout=300):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

    def _key(self, suffix):
        return f'{self.PREFIX}:{self.name}:{suffix}'

    @property
    def state(self):
        try:
            current = self.redis.get(self._key('state'))
            if current is None:
                return CLOSED
            if current == OPEN and self._seconds_since_failure() > self.reset_timeout:
                self.redis.set(self._key('state'), HALF_OPEN)
                return HALF_OPEN
            return current
        except Exception:
            return CLOSED

    @property
    def failure_count(self):
        try:
            val = self.redis.get(self._key('failures'))
            return int(val) if val else 0
        except Exception:
            return 0

    def _seconds_since_failure(self):
        last = self.redis.get(self._key('last_failure'))
        if not last:
            return float('inf')
        return time.time() - float(last)

    def call(self, func, *args, **kwargs):
        """Execute func through the breaker, recording the outcome."""
        if self.state == OPEN:
            retry_after = None
            try:
                retry_after = max(0, self.reset_timeout - self._seconds_since_failure())
            except Exception:
                pass
            raise CircuitOpenError(self.name, retry_after=retry_after)

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _on_success(self):
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.hincrby(self._key('health'), 'success', 1)
            pipe.hset(self._key('health'), 'last_success', str(time.time()))
            pipe.execute()
        except Exception:
            logger.debug("Could not record success for '%s'", self.name)

    def _on_failure(self, error):
        try:
            count = self.redis.incr(self._key('failures'))
            now = str(time.time())
            self.redis.set(self._key('last_failure'), now)
            pipe = self.redis.pipeline()
            pipe.hincrby(self._key('health'), 'failure', 1)
            pipe.hset(self._key('health'), 'last_failure', now)
            pipe.hset(self._key('health'), 'last_error', str(error)[:200])
            pipe.execute()
            if int(count) >= self.failure_threshold:
                self.redis.set(self._key('state'), OPEN)
                logger.warning(
                    "Circuit '%s' OPENED after %s failures (threshold=%d): %s",
                    self.name, count, self.failure_threshold, error,
                )
            else:
                logger.info("Circuit '%s' failure %s/%d: %s", self.name, count, self.failure_threshold, error)
        except Exception:
            logger.debug("Could not record failure for '%s'", self.name)

    def get_health(self):
        """Health snapshot for /api/health."""
        try:
            data = self.redis.hgetall(self._key('health')) or {}
        except Exception:
            data = {}
        return {
            'name': self.name,
            'state': self.state,
            'failure_count': self.failure_count,
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
            'total_success': int(data.get('success', 0)),
            'total_failure': int(data.get('failure', 0)),
            'last_error': data.get('last_error', ''),
        }

    def reset(self):
        """Manually close the breaker."""
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.delete(self._key('last_failure'))
            pipe.execute()
            logger.info("Circuit '%s' manually reset to CLOSED", self.name)
        except Exception as e:
            logger.error("Failed to reset circuit '%s': %s", self.name, e)


def init_breakers(redis_client):
    """Breakers for every external service this app calls, keyed by name."""
    return {
        'catalog_source': CircuitBreaker('catalog_source', redis_client, failure_threshold=3, reset_timeout=180),
    }
