"""Reminder jobs run by the scheduler, the cron endpoints and the CLI."""
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Optional

from bookbase.circulation import Circulation
from bookbase.config import settings
from bookbase.database import utc_now
from bookbase.exceptions import ExternalServiceError
from bookbase.services.email_service import EmailService

logger = logging.getLogger(__name__)


def run_due_soon_job(circulation: Optional[Circulation] = None,
                     email_service: Optional[EmailService] = None,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
    """Email every member whose loans fall due in ``due_soon_days`` days."""
    circulation = circulation or Circulation()
    email_service = email_service or EmailService()
    now = now or utc_now()

    checkouts = circulation.checkouts_due_soon(now)
    if not checkouts:
        logger.info("No books due soon found")
        return {"success": True, "message": "No books due soon found"}

    groups: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for checkout in checkouts:
        group = groups.get(checkout.user_id)
        if group is None:
            email = (checkout.user or {}).get("email")
            group = groups[checkout.user_id] = {
                "email": email,
                "name": checkout.user_name or email or "Library User",
                "checkouts": [],
            }
        group["checkouts"].append(checkout)

    sent = failed = 0
    for user_id, group in groups.items():
        result = email_service.send_due_soon_notification(group["email"], group["name"], group["checkouts"], now)
        if result.success:
            sent += 1
        else:
            failed += 1
            logger.warning("Due soon email for user %s failed: %s", user_id, result.error)

    logger.info("Due soon notifications completed: %d sent, %d failed", sent, failed)
    return {
        "success": True,
        "message": f"Sent due soon notification for {len(checkouts)} books to {sent} users",
        "details": {
            "total_books": len(checkouts),
            "emails_sent": sent,
            "emails_failed": failed,
            "total_users": len(groups),
        },
    }


def run_overdue_job(circulation: Optional[Circulation] = None,
                    email_service: Optional[EmailService] = None,
                    librarian_email: Optional[str] = None,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
    """Send the librarian one report listing every overdue loan."""
    circulation = circulation or Circulation()
    email_service = email_service or EmailService()
    librarian_email = librarian_email or settings.librarian_email
    now = now or utc_now()

    checkouts = circulation.overdue_for_report(now)
    if not checkouts:
        logger.info("No overdue books found")
        return {"success": True, "message": "No overdue books found"}

    if not librarian_email:
        raise ValueError("LIBRARIAN_EMAIL environment variable not set")

    result = email_service.send_overdue_notification(librarian_email, checkouts, now)
    if not result.success:
        raise ExternalServiceError(f"Failed to send overdue email: {result.error}")

    circulation.mark_librarian_notified(c.id for c in checkouts)
    logger.info("Overdue notification sent for %d books", len(checkouts))
    return {
        "success": True,
        "message": f"Sent overdue notification for {len(checkouts)} books",
        "details": {
            "total_overdue_books": len(checkouts),
            "librarian_email": librarian_email,
        },
    }
