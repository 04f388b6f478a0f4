"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it (SlowAPIMiddleware reads app.state.limiter) and
api/routes/accounts.py applies per-route limits with @limiter.limit() to the
password sign-in and both passkey validation routes.

One instance for the whole process: every route must count against the same
in-memory store, keyed by client IP.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
