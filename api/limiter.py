"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware and register the
429 handler) and api/routes/v1/auth.py (to apply per-route limits with
@limiter.limit()). The limits themselves come from Settings
(SIGNUP_RATE_LIMIT, REFRESH_RATE_LIMIT).

Counters are per client address and live in process memory, so each worker
process enforces its own budget.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
