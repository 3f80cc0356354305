"""
Due Date Module

The effective-due-date rule and the due-date status classifier. Every
consumer that needs "when is this invoice actually due" (the reminder
scheduler, the status classifier and the late fee calculator) goes through
``resolve_effective_due_date``.
"""

from datetime import datetime, date, timedelta
from dataclasses import dataclass
from typing import Any, Optional, Union
from enum import Enum
import logging

from .models import (
    Invoice, InvoiceStatus, PaymentTerms, parse_calendar_date, parse_payment_terms
)
from .payment_terms import is_due_on_receipt


logger = logging.getLogger("reminder_engine.due_dates")

DEFAULT_DUE_SOON_DAYS = 3


class DueDateTag(Enum):
    """Display status derived from the effective due date"""
    OVERDUE = "overdue"
    DUE_SOON = "due-soon"
    UPCOMING = "upcoming"
    DRAFT_PAST_DUE = "draft-past-due"
    DRAFT_DUE_TODAY = "draft-due-today"
    DRAFT_DUE_SOON = "draft-due-soon"
    DRAFT_UPCOMING = "draft-upcoming"


@dataclass(frozen=True)
class DueDateClassification:
    """Status tag plus the day count that goes with it"""
    tag: DueDateTag
    days: int

    @property
    def is_overdue(self) -> bool:
        return self.tag == DueDateTag.OVERDUE

    @property
    def overdue_days(self) -> int:
        """Days past due; zero unless the tag is ``overdue``"""
        return self.days if self.is_overdue else 0


def resolve_effective_due_date(
    due_date: Union[date, datetime, str],
    payment_terms: Any,
    status: Union[InvoiceStatus, str],
    updated_at: Union[datetime, date, str, None],
    for_overdue_check: bool = False
) -> Optional[date]:
    """
    Compute the date an invoice is actually due.

    For sent "Due on Receipt" invoices the due date is the day the invoice
    went out, taken from ``updated_at``. With ``for_overdue_check`` that day
    is pushed forward by one, so an invoice is not overdue on its send day.
    Every other invoice is due on its stored ``due_date``.

    Never raises: malformed terms, an unknown status or an unparseable
    ``updated_at`` all fall back to ``due_date``.

    Args:
        due_date: Stored due date
        payment_terms: PaymentTerms, mapping, JSON string or None
        status: Stored invoice status
        updated_at: Timestamp of the last mutation (proxy for send time)
        for_overdue_check: Apply the send-day offset used by overdue math

    Returns:
        Effective due date, or None if ``due_date`` itself is unusable
        and the Due on Receipt rule does not apply
    """
    stored_due_date = parse_calendar_date(due_date)

    terms = payment_terms if isinstance(payment_terms, PaymentTerms) else parse_payment_terms(payment_terms)
    if not is_due_on_receipt(terms):
        return stored_due_date

    try:
        invoice_status = InvoiceStatus.parse(status)
    except ValueError:
        logger.warning(f"Unknown invoice status {status!r}; using stored due date")
        return stored_due_date
    if invoice_status == InvoiceStatus.DRAFT:
        return stored_due_date

    sent_on = parse_calendar_date(updated_at)
    if sent_on is None:
        return stored_due_date

    if for_overdue_check:
        try:
            return sent_on + timedelta(days=1)
        except OverflowError:
            return stored_due_date
    return sent_on


def effective_due_date(invoice: Invoice, for_overdue_check: bool = False) -> date:
    """Effective due date for an invoice snapshot"""
    resolved = resolve_effective_due_date(
        invoice.due_date,
        invoice.payment_terms,
        invoice.status,
        invoice.updated_at,
        for_overdue_check=for_overdue_check
    )
    return resolved if resolved is not None else invoice.due_date


def classify_due_date(
    effective_due: date,
    status: Union[InvoiceStatus, str],
    as_of: Optional[date] = None,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS
) -> DueDateClassification:
    """
    Classify an effective due date relative to ``as_of`` (default today).

    Drafts are never overdue; they get ``draft-*`` tags for display only.
    Any other status is overdue once the due date is today or earlier.
    """
    today = as_of or date.today()
    diff_days = (effective_due - today).days

    if InvoiceStatus.parse(status) == InvoiceStatus.DRAFT:
        if diff_days < 0:
            return DueDateClassification(DueDateTag.DRAFT_PAST_DUE, abs(diff_days))
        if diff_days == 0:
            return DueDateClassification(DueDateTag.DRAFT_DUE_TODAY, 0)
        if diff_days <= due_soon_days:
            return DueDateClassification(DueDateTag.DRAFT_DUE_SOON, diff_days)
        return DueDateClassification(DueDateTag.DRAFT_UPCOMING, diff_days)

    if diff_days <= 0:
        return DueDateClassification(DueDateTag.OVERDUE, abs(diff_days))
    if diff_days <= due_soon_days:
        return DueDateClassification(DueDateTag.DUE_SOON, diff_days)
    return DueDateClassification(DueDateTag.UPCOMING, diff_days)


def classify_invoice(
    invoice: Invoice,
    as_of: Optional[date] = None,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS
) -> DueDateClassification:
    """Classify an invoice using the overdue-check form of its effective due date"""
    return classify_due_date(
        effective_due_date(invoice, for_overdue_check=True),
        invoice.status,
        as_of=as_of,
        due_soon_days=due_soon_days
    )
