"""
Notifier: background delivery of scheduled reminders.

Each tick claims every due reminder inside one transaction, sends them,
marks them sent and commits once. Claims use FOR UPDATE SKIP LOCKED, so
overlapping ticks or several running instances never pick the same row.
Store calls run on worker threads and the sent marks are written only at
commit, so dialogue handlers keep running and writing during a tick.

Delivery is at-least-once: a store error anywhere in the batch rolls the
whole batch back, including rows whose message already went out, and the
next tick sends those again. A failed Telegram send only gets logged; the
row is still marked sent.

An hourly audit invalidates reminders whose availability or user has
since been invalidated.
"""
import asyncio
import logging
from typing import Callable, Dict, Optional

from roster.core.config import settings
from roster.core.exceptions import StoreError
from roster.db.base import utcnow
from roster.db.session import run_blocking
from roster.models.enums import UsrType
from roster.services.scheduled_notifications import NotificationBatch
from roster.services.scheduling import audit_scheduled_notifications
from roster.telegram.utils import format_date, truncate

logger = logging.getLogger(__name__)

_notifier_running = False
_tasks = []
_status: Dict[str, Optional[bool]] = {"notifier": None, "audit": None}


def get_status() -> Dict[str, Optional[bool]]:
    """Outcome of the last notifier tick and audit run (None before the first)."""
    return dict(_status)


def format_reminder(availability, user) -> str:
    remarks = truncate(availability.remarks, 50) or "None"
    lines = [
        "Reminder: Upcoming Planned Event",
        "",
        f"Date: {format_date(availability.avail)}",
        f"Type: {availability.ict_type.value}",
        f"Remarks: {remarks}",
    ]
    if user.usr_type is UsrType.NS:
        if availability.saf100:
            lines.append("SAF100 Issued")
        elif availability.planned:
            lines.append("SAF100 Pending")
    lines.append("")
    lines.append("Please wait for the flight schedule to be sent.")
    return "\n".join(lines)


async def process_scheduled_notifications(open_batch: Callable[[], NotificationBatch], gateway) -> int:
    """
    One notifier tick. Returns the number of rows marked sent.

    Raises ``StoreError`` after rolling back if the store fails mid-batch.
    """
    batch = await run_blocking(open_batch)
    try:
        notifications = await run_blocking(batch.claim_due, utcnow())
        if not notifications:
            logger.debug("[NOTIFIER] No scheduled notifications to process.")
            await run_blocking(batch.commit)
            return 0

        processed = 0
        for notification in notifications:
            availability = await run_blocking(batch.get_availability, notification.avail_id)
            if availability is None:
                logger.warning(
                    f"[NOTIFIER] Availability with ID {notification.avail_id} not found or invalid. "
                    f"Skipping notification ID {notification.id}."
                )
                continue

            user = await run_blocking(batch.get_user, availability.user_id)
            if user is None:
                logger.warning(
                    f"[NOTIFIER] User with ID {availability.user_id} not found or invalid. "
                    f"Skipping notification ID {notification.id}."
                )
                continue

            logger.info(f"[NOTIFIER] Sending notification to user {user.ops_name} for availability on {availability.avail}")
            if await gateway.send_message(user.tele_id, format_reminder(availability, user)) is None:
                logger.error(f"[NOTIFIER] Error sending message to user {user.ops_name}")

            batch.mark_sent(notification)
            processed += 1

        await run_blocking(batch.commit)
        return processed
    except StoreError:
        logger.error("[NOTIFIER] Error processing scheduled notifications, rolling back transaction.")
        await run_blocking(batch.rollback)
        raise
    finally:
        await run_blocking(batch.close)


def run_audit(session_factory) -> int:
    db = session_factory()
    try:
        return audit_scheduled_notifications(db)
    finally:
        db.close()


# ============================================================================
# BACKGROUND TASKS: run on the bot's event loop
# ============================================================================

async def _notifier_loop(open_batch, gateway, interval: int):
    logger.info(f"[NOTIFIER] Started. Interval: {interval}s, timezone: {settings.TIMEZONE}")
    while _notifier_running:
        await asyncio.sleep(interval)
        try:
            count = await process_scheduled_notifications(open_batch, gateway)
            _status["notifier"] = True
            if count:
                logger.info(f"[NOTIFIER] Processed {count} scheduled notification(s)")
        except Exception as e:
            _status["notifier"] = False
            logger.error(f"[NOTIFIER] Notifier task failed to process notifications: {e}")


async def _audit_loop(session_factory, interval: int):
    while _notifier_running:
        await asyncio.sleep(interval)
        logger.info("[AUDIT] Starting audit task...")
        try:
            invalidated = await run_blocking(run_audit, session_factory)
            _status["audit"] = True
            logger.info(f"[AUDIT] Audit task completed successfully. Invalidated {invalidated} notification(s).")
        except Exception as e:
            _status["audit"] = False
            logger.error(f"[AUDIT] Audit task failed: {e}")


def start_notifier(open_batch, session_factory, gateway):
    """Start the notifier and audit loops. Must be called on a running event loop."""
    global _notifier_running
    _notifier_running = True
    _tasks.append(asyncio.create_task(_notifier_loop(open_batch, gateway, settings.NOTIFIER_INTERVAL_SECONDS)))
    _tasks.append(asyncio.create_task(_audit_loop(session_factory, settings.AUDIT_INTERVAL_SECONDS)))
    logger.info("[NOTIFIER] Scheduled notification tasks initialized")


def stop_notifier():
    """Stop both loops. Safe to call from the loop that runs them."""
    global _notifier_running
    _notifier_running = False
    for task in _tasks:
        task.cancel()
    _tasks.clear()
    logger.info("[NOTIFIER] Stopped")
