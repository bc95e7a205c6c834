"""
Conversation housekeeping.

Conversations left idle are closed so the next message from that phone
starts over at the welcome menu.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from app.core.scheduling.repository import BookingRepository

logger = logging.getLogger(__name__)


async def close_idle_conversations(
    repository: BookingRepository,
    idle_timeout: timedelta,
    now: Optional[datetime] = None,
) -> int:
    """Close ACTIVE conversations idle for longer than ``idle_timeout``.

    Args:
        repository: Storage collaborator
        idle_timeout: Maximum allowed inactivity
        now: Reference time (current local time if not provided)

    Returns:
        Number of conversations closed
    """
    cutoff = (now or datetime.now()) - idle_timeout
    closed = await repository.close_idle_conversations(cutoff)
    if closed:
        logger.info(f"Closed {closed} idle conversations (inactive since {cutoff})")
    return closed


async def run_idle_sweeper(
    repository: BookingRepository,
    idle_timeout: timedelta,
    interval_seconds: float,
) -> None:
    """Run the idle sweep forever, every ``interval_seconds``.

    Meant to be started as a background task and cancelled on shutdown.
    """
    logger.info(
        f"Idle conversation sweep every {interval_seconds}s "
        f"(timeout {idle_timeout})"
    )
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await close_idle_conversations(repository, idle_timeout)
        except Exception as e:
            logger.error(f"Idle conversation sweep failed: {e}", exc_info=True)
