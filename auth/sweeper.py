"""
auth/sweeper.py -- Purge refresh records that are past their expiry.

sweep() is the single entry point. It is triggered from outside the core:
either by cron via `python main.py sweep`, or by the API's background task
(api/main.py) every CLEANUP_INTERVAL_SECONDS.

Only expiry decides deletion. A revoked record that has not expired yet is
kept: it is what lets a late replay of a rotated token be matched and
reported as reuse rather than as an unknown token.
"""

from __future__ import annotations

import logging
from datetime import datetime

from auth.store import RefreshTokenStore
from core.clock import Clock, utc_now

logger = logging.getLogger("farmerauth.sweeper")


def sweep(store: RefreshTokenStore, now: datetime | None = None, clock: Clock = utc_now) -> int:
    """Delete every expired refresh record. Returns the number of records removed."""
    removed = store.delete_expired(now or clock())
    if removed:
        logger.info("Swept %d expired refresh token record(s)", removed)
    else:
        logger.debug("Sweep found no expired refresh token records")
    return removed
