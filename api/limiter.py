"""
api/limiter.py -- Shared slowapi rate limiter for the DriftWatch API.

api/main.py mounts it (SlowAPIMiddleware reads app.state.limiter) and every
router module decorates its handlers with @limiter.limit(). One instance per
process, so all routes count against the same in-memory store.

Keys are client addresses. Cron routes read their limit from
Settings.cron_rate_limit at request time; the other routes carry fixed
limits generous enough for a scanner fleet reporting snapshots.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
