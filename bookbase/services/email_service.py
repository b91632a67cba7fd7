import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from html import escape
from typing import List, Optional

from bookbase.checkout import Checkout
from bookbase.config import settings
from bookbase.database import parse_iso, utc_now

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"
SEPARATOR = "─" * 50


@dataclass
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self):
        return {"success": self.success, "message_id": self.message_id, "error": self.error}


def _format_date(value: str) -> str:
    return parse_iso(value).strftime(DATE_FORMAT)


def _title(checkout: Checkout) -> str:
    return (checkout.book or {}).get("title") or "Unknown Title"


def _authors(checkout: Checkout) -> str:
    return ", ".join((checkout.book or {}).get("authors") or []) or "Unknown Author"


class EmailService:
    """Sends reminder and report emails through an SMTP server."""

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 username: Optional[str] = None, password: Optional[str] = None,
                 use_tls: Optional[bool] = None, from_email: Optional[str] = None,
                 from_name: Optional[str] = None, enabled: Optional[bool] = None):
        self.host = host or settings.smtp_host
        self.host_given = bool(host) or settings.smtp_host_set
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_username
        self.password = password if password is not None else settings.smtp_password
        self.use_tls = settings.smtp_use_tls if use_tls is None else use_tls
        self.from_email = from_email or settings.smtp_from_email
        self.from_name = from_name or settings.smtp_from_name
        self.enabled = settings.enable_email_notifications if enabled is None else enabled

    @property
    def is_configured(self) -> bool:
        """A host or credentials must have been supplied, not just the defaults."""
        return bool(self.host and self.from_email and (self.host_given or self.username))

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> EmailResult:
        """Send one message. Failures are logged and reported, never raised."""
        if not self.enabled:
            logger.warning("Email notifications are disabled; not sending '%s' to %s", subject, to)
            return EmailResult(success=False, error="Email notifications are disabled")
        if not self.is_configured:
            logger.warning("SMTP is not configured; not sending '%s' to %s", subject, to)
            return EmailResult(success=False, error="SMTP is not configured")

        msg = EmailMessage()
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain=self.from_email.split("@")[-1])
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=settings.smtp_timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send '%s' to %s: %s", subject, to, e)
            return EmailResult(success=False, error=str(e))

        logger.info("Email '%s' sent to %s (%s)", subject, to, msg["Message-ID"])
        return EmailResult(success=True, message_id=msg["Message-ID"])

    # ------------------------- Templates ------------------------- #
    def send_due_soon_notification(self, user_email: str, user_name: str, checkouts: List[Checkout],
                                   now: Optional[datetime] = None) -> EmailResult:
        now = now or utc_now()
        lines = [
            f"• {_title(c)} by {_authors(c)} - Due: {_format_date(c.expected_return_date)} "
            f"({c.days_remaining(now)} days remaining)"
            for c in checkouts
        ]
        books_list = "\n".join(lines)
        policies = [
            "Books must be returned by the due date",
            "Late fees may apply for overdue books",
            "You can return books at the library during operating hours",
        ]

        text = (
            f"Hello {user_name},\n\n"
            f"This is a friendly reminder that you have {len(checkouts)} book(s) due in "
            f"{settings.due_soon_days} days:\n\n{books_list}\n\n"
            "Please return them on time to avoid late fees.\n\nLibrary Policies:\n"
            + "\n".join(f"- {p}" for p in policies)
            + "\n\nBest regards,\nYour Library Team\n"
        )
        policy_items = "".join(f"<li>{p}</li>" for p in policies)
        html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Hello {escape(user_name)},</h2>
  <p>This is a friendly reminder that you have <strong>{len(checkouts)}</strong> book(s) due in {settings.due_soon_days} days:</p>
  <div style="background-color: #f0f9ff; padding: 15px; border-radius: 5px; margin: 15px 0; border-left: 4px solid #3b82f6;">
    <pre style="margin: 0; white-space: pre-wrap; font-family: inherit;">{escape(books_list)}</pre>
  </div>
  <p>Please return them on time to avoid late fees.</p>
  <p><strong>Library Policies:</strong></p>
  <ul style="margin: 10px 0;">
    {policy_items}
  </ul>
  <p>Best regards,<br>Your Library Team</p>
  <hr style="margin: 20px 0; border: none; border-top: 1px solid #e5e7eb;">
  <p style="font-size: 12px; color: #6b7280;">This is an automated reminder from the Library Management System.</p>
</div>
"""
        return self.send(user_email, "Books Due Soon - Library Reminder", text, html)

    def send_overdue_notification(self, librarian_email: str, checkouts: List[Checkout],
                                  now: Optional[datetime] = None) -> EmailResult:
        if not checkouts:
            raise ValueError("No overdue checkouts to report")
        now = now or utc_now()

        overdue_days = [abs(c.days_remaining(now)) for c in checkouts]
        total = len(checkouts)
        average = round(sum(overdue_days) / total)
        worst_index = max(range(total), key=lambda i: overdue_days[i])
        worst = checkouts[worst_index]

        blocks = []
        for checkout, days in zip(checkouts, overdue_days):
            user = checkout.user or {}
            blocks.append("\n".join([
                f"Book: {_title(checkout)} by {_authors(checkout)} "
                f"(ISBN: {(checkout.book or {}).get('isbn') or 'No ISBN'})",
                f"User: {checkout.user_name or 'Unknown User'}",
                f"Email: {user.get('email') or 'No email'}",
                f"Phone: {user.get('phone') or 'No phone'}",
                f"Checked out: {_format_date(checkout.checkout_date)}",
                f"Due date: {_format_date(checkout.expected_return_date)}",
                f"Days overdue: {days}",
            ]))
        books_list = f"\n\n{SEPARATOR}\n\n".join(blocks)

        actions = [
            "Contact users with books overdue more than 7 days",
            "Send follow-up reminders to users with multiple overdue books",
            "Consider applying late fees as per library policy",
            "Update user records if necessary",
        ]
        today = now.strftime(DATE_FORMAT)
        summary = [
            f"Total overdue books: {total}",
            f"Average days overdue: {average} days",
            f'Most overdue book: "{_title(worst)}" ({overdue_days[worst_index]} days overdue)',
        ]

        text = (
            f"Daily Overdue Books Report\n\nThe following {total} books are overdue as of {today}:\n\n"
            + "\n".join(summary)
            + f"\n\nDetailed List:\n\n{books_list}\n\nRecommended Actions:\n"
            + "\n".join(f"- {a}" for a in actions)
            + "\n"
        )
        summary_items = "".join(f"<li>{escape(s)}</li>" for s in summary)
        action_items = "".join(f"<li>{a}</li>" for a in actions)
        generated_at = now.strftime("%Y-%m-%d %H:%M UTC")
        html = f"""
<div style="font-family: Arial, sans-serif; max-width: 700px; margin: 0 auto;">
  <h2 style="color: #dc2626;">Daily Overdue Books Report</h2>
  <p>The following <strong>{total}</strong> books are overdue as of <strong>{today}</strong>:</p>
  <div style="background-color: #fef2f2; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid #ef4444;">
    <h3 style="margin-top: 0; color: #dc2626;">Summary Statistics</h3>
    <ul style="margin: 10px 0;">
      {summary_items}
    </ul>
  </div>
  <div style="background-color: #f9fafb; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <h3 style="margin-top: 0;">Detailed List:</h3>
    <pre style="margin: 0; white-space: pre-wrap; font-family: 'Courier New', monospace; font-size: 14px; line-height: 1.4;">{escape(books_list)}</pre>
  </div>
  <div style="background-color: #f0f9ff; padding: 15px; border-radius: 8px; margin: 20px 0;">
    <h3 style="margin-top: 0; color: #1d4ed8;">Recommended Actions:</h3>
    <ul>
      {action_items}
    </ul>
  </div>
  <hr style="margin: 30px 0; border: none; border-top: 1px solid #e5e7eb;">
  <p style="font-size: 14px; color: #6b7280;">Generated automatically by the Library Management System on {generated_at}.</p>
</div>
"""
        return self.send(librarian_email, f"Overdue Books Report - {total} books need attention", text, html)
