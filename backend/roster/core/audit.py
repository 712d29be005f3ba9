"""
Audit logging for roster decisions.

One JSON line per event on the ``audit`` logger: registration decisions,
planning commits, notification subscription changes and refused commands.
"""
import logging
import json
from typing import Any, Dict, Optional

from roster.db.base import utcnow

# Separate logger for audit events (can be shipped to centralized logging)
audit_logger = logging.getLogger("audit")


class AuditLog:
    """Central audit logging for roster events."""

    @staticmethod
    def log_registration(
        action: str,  # "apply", "approve", "reject"
        tele_id: int,
        ops_name: str,
        decided_by: Optional[int] = None,
        admin: bool = False,
    ):
        """
        Usage:
            AuditLog.log_registration("apply", 1234, "ALPHA")
            AuditLog.log_registration("approve", 1234, "ALPHA", decided_by=42, admin=True)
        """
        log_entry = {
            "timestamp": utcnow().isoformat(),
            "event_type": f"registration.{action}",
            "tele_id": tele_id,
            "ops_name": ops_name,
        }
        if decided_by is not None:
            log_entry["decided_by"] = decided_by
            log_entry["admin"] = admin

        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_plan_change(
        planned_by: int,
        avail_id: int,
        ops_name: str,
        avail_date: str,
        planned: bool,
    ):
        """One line per availability whose planned status changed in a commit."""
        log_entry = {
            "timestamp": utcnow().isoformat(),
            "event_type": "plan.planned" if planned else "plan.unplanned",
            "planned_by": planned_by,
            "avail_id": avail_id,
            "ops_name": ops_name,
            "avail": avail_date,
        }

        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_notification_settings(
        chat_id: int,
        changed_by: int,
        flags: Optional[Dict[str, Any]] = None,
    ):
        """``flags`` is None when all notifications were disabled for the chat."""
        log_entry = {
            "timestamp": utcnow().isoformat(),
            "event_type": "notifications.updated" if flags is not None else "notifications.disabled",
            "chat_id": chat_id,
            "changed_by": changed_by,
        }
        if flags is not None:
            log_entry["flags"] = flags

        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_user_change(
        user_id: int,
        changed_by: int,
        changes: Dict[str, Any],
    ):
        """``changes`` maps field name to [old, new]."""
        log_entry = {
            "timestamp": utcnow().isoformat(),
            "event_type": "user.updated",
            "user_id": user_id,
            "changed_by": changed_by,
            "changes": changes,
        }

        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_user_removed(
        user_id: int,
        ops_name: str,
        removed_by: int,
    ):
        log_entry = {
            "timestamp": utcnow().isoformat(),
            "event_type": "user.removed",
            "user_id": user_id,
            "ops_name": ops_name,
            "removed_by": removed_by,
        }

        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_saf100(
        issued_by: int,
        avail_id: int,
        ops_name: str,
        avail_date: str,
    ):
        log_entry = {
            "timestamp": utcnow().isoformat(),
            "event_type": "saf100.issued",
            "issued_by": issued_by,
            "avail_id": avail_id,
            "ops_name": ops_name,
            "avail": avail_date,
        }

        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_access_denied(
        command: str,
        tele_id: int,
        reason: str,
    ):
        """
        Log refused commands (non-admins trying admin commands).

        Usage:
            AuditLog.log_access_denied("plan", 1234, "Not admin")
        """
        log_entry = {
            "timestamp": utcnow().isoformat(),
            "event_severity": "WARNING",
            "event_type": "access_denied",
            "command": command,
            "tele_id": tele_id,
            "reason": reason,
        }

        audit_logger.warning(json.dumps(log_entry))
