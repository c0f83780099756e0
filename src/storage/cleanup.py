# -*- coding: utf-8 -*-
"""
Database cleanup and maintenance tasks.
Removes old triggered rules and expired notifications.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict

from loguru import logger

from src.config import get_database_cleanup_config
from src.errors import StoreError
from src.notif.inbox import NotificationInbox
from src.rules.lifecycle import RuleLifecycleManager


def run_cleanup(lifecycle: RuleLifecycleManager, inbox: NotificationInbox) -> Dict[str, int]:
    """
    Run retention cleanup once.

    Rules:
    1. Delete Triggered rules whose last trigger is older than triggered_retention_days (default 30)
    2. Delete notifications older than notification_retention_days (default 30) or past expires_at

    Returns:
        Dict with cleanup stats: {"rules_deleted": 3, "notifications_deleted": 42}
    """
    config = get_database_cleanup_config()

    if not config.get('enabled', True):
        logger.info("Database cleanup is disabled in config")
        return {"rules_deleted": 0, "notifications_deleted": 0}

    rule_days = config['triggered_retention_days']
    notif_days = config['notification_retention_days']
    logger.info(f"Starting database cleanup: triggered rules>{rule_days}d, notifications>{notif_days}d")

    rules_deleted = lifecycle.cleanup_triggered(rule_days)
    notifications_deleted = inbox.cleanup_notifications(notif_days)

    logger.info(
        f"Database cleanup complete: deleted {rules_deleted} rule(s), "
        f"{notifications_deleted} notification(s)"
    )
    return {"rules_deleted": rules_deleted, "notifications_deleted": notifications_deleted}


def seconds_until(hour: int, now: datetime) -> float:
    """Seconds from `now` (aware UTC) to the next HH:00 UTC."""
    next_run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if now >= next_run:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def schedule_cleanup_task(lifecycle: RuleLifecycleManager, inbox: NotificationInbox):
    """
    Async task that runs cleanup daily at schedule_hour_utc.
    Uses simple asyncio loop rather than full scheduler library.
    """
    config = get_database_cleanup_config()

    if not config.get('enabled', True):
        logger.info("Database cleanup scheduler is disabled")
        return

    schedule_hour = config['schedule_hour_utc']
    logger.info(f"Database cleanup scheduled daily at {schedule_hour:02d}:00 UTC")

    while True:
        try:
            sleep_seconds = seconds_until(schedule_hour, datetime.now(timezone.utc))
            logger.info(f"Next cleanup in {sleep_seconds/3600:.1f}h")

            await asyncio.sleep(sleep_seconds)

            logger.info("Running scheduled database cleanup...")
            result = run_cleanup(lifecycle, inbox)
            logger.info(f"Cleanup result: {result}")

        except StoreError as e:
            logger.error(f"Scheduled cleanup failed: {e}")
            await asyncio.sleep(3600)
        except Exception as e:
            logger.exception(f"Error in cleanup scheduler: {e}")
            # Sleep 1 hour before retrying
            await asyncio.sleep(3600)
