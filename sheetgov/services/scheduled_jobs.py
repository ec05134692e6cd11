"""
Scheduled Jobs — concrete housekeeping jobs.

Jobs:
    - lock_reaper: deletes expired row locks and clears their row mirrors
"""

from __future__ import annotations

import logging
from typing import Any

from sheetgov.services.lock_service import purge_expired_locks
from sheetgov.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("lock_reaper", interval_config="LOCK_REAPER_INTERVAL_SECONDS")
def reap_expired_locks(app) -> dict[str, Any]:
    """Remove row locks whose expiry has passed."""
    purged = purge_expired_locks()
    if purged:
        logger.info("Lock reaper purged %d expired locks", purged)
    return {"locks_purged": purged}
