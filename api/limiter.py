"""
api/limiter.py -- The process-wide slowapi Limiter.

api/main.py mounts it with SlowAPIMiddleware; api/routes/v1/auth.py decorates
login and register with @limiter.limit(LOGIN_RATE_LIMIT). Counters live in
this one object, so both sides must import it from here.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

# Per client IP; read once at import so tests can raise it through the env.
LOGIN_RATE_LIMIT = get_settings().login_rate_limit
