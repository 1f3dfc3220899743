"""Reconciliation tasks for the Waterpoint gateway.

This module contains the periodic sweep that ages out stale transactions
and credentials nobody polled or called back for.
"""

import asyncio
import logging
import time

from waterpoint.core.config import get_settings
from waterpoint.db.engine import close_db, create_engine, create_session_factory
from waterpoint.services.sweeper_service import ReconciliationSweeper
from waterpoint.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async coroutine in sync context for Celery."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(name="reconciliation.sweep")
def sweep() -> dict:
    """Run one sweep pass.

    Each worker run gets its own engine, since the event loop is new.

    Returns:
        Dict of rows changed per pass (None for a failed pass)
    """
    return run_async(_sweep_async())


async def _sweep_async() -> dict:
    """Async implementation of sweep."""
    start_time = time.time()
    settings = get_settings()
    engine = create_engine(settings)
    try:
        sweeper = ReconciliationSweeper(settings, create_session_factory(engine))
        counts = await sweeper.sweep_once()
    finally:
        await close_db(engine)

    elapsed = time.time() - start_time
    logger.info(f"[sweep] finished counts={counts} elapsed={elapsed:.3f}s")
    return counts
