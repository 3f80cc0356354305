"""
Invoice Lifecycle Hooks

Entry points the invoice handlers call after creating, sending, editing or
marking an invoice paid. Each hook returns a ScheduleResult; none of them
raise engine errors. Calls for the same invoice are serialized so a send
racing an edit cannot leave two divergent schedules behind: the last call
to take the lock rebuilds the full set from its snapshot.
"""

from typing import Dict, List, Optional
import logging
import threading
from contextlib import contextmanager

from .models import Invoice, InvoiceStatus, ReminderRule
from .payment_terms import is_due_on_receipt
from .scheduler import ReminderScheduler, ScheduleResult, ScheduleOutcome, SchedulePlan, reminders_eligible


logger = logging.getLogger("reminder_engine.lifecycle")


def reminder_inputs_changed(previous: Invoice, current: Invoice) -> bool:
    """
    True when an edit touches anything the schedule depends on.

    That is status, due date, payment terms and reminder settings. For
    sent "Due on Receipt" invoices the send timestamp is the anchor, so a
    changed ``updated_at`` counts too.
    """
    if previous.status != current.status:
        return True
    if previous.due_date != current.due_date:
        return True
    if previous.payment_terms != current.payment_terms:
        return True
    if previous.reminder_settings != current.reminder_settings:
        return True
    if is_due_on_receipt(current.payment_terms) and previous.updated_at != current.updated_at:
        return True
    return False


class _InvoiceLock:
    """A per-invoice lock plus the number of callers holding or waiting on it"""

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class ReminderLifecycle:
    """Routes invoice lifecycle events to the reminder scheduler"""

    def __init__(self, scheduler: ReminderScheduler):
        self.scheduler = scheduler
        self._locks: Dict[str, _InvoiceLock] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def _locked(self, invoice_id: str):
        """Serialize calls for one invoice; the entry is dropped once nobody needs it"""
        with self._registry_lock:
            entry = self._locks.get(invoice_id)
            if entry is None:
                entry = _InvoiceLock()
                self._locks[invoice_id] = entry
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._registry_lock:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[invoice_id]

    def _run(self, invoice: Invoice, event: str, rules: Optional[List[ReminderRule]] = None,
             actor: Optional[str] = None) -> ScheduleResult:
        with self._locked(invoice.id):
            logger.debug(f"Invoice {invoice.id} {event} (status {invoice.status.value})")
            return self.scheduler.schedule(invoice, rules=rules, actor=actor)

    def on_created(self, invoice: Invoice, actor: Optional[str] = None) -> ScheduleResult:
        """New invoice: drafts get nothing, anything already sent gets a schedule"""
        if invoice.status == InvoiceStatus.DRAFT:
            return ScheduleResult.from_plan(SchedulePlan(invoice_id=invoice.id, eligible=False))
        return self._run(invoice, "created", actor=actor)

    def on_sent(self, invoice: Invoice, actor: Optional[str] = None) -> ScheduleResult:
        """Invoice left draft; ``updated_at`` is the send time"""
        return self._run(invoice, "sent", actor=actor)

    def on_paid(self, invoice: Invoice, actor: Optional[str] = None) -> ScheduleResult:
        """Invoice marked paid; purges scheduled reminders"""
        return self._run(invoice, "paid", actor=actor)

    def on_status_changed(self, invoice: Invoice, actor: Optional[str] = None) -> ScheduleResult:
        """Any other status transition, e.g. reverted to draft"""
        return self._run(invoice, "status_changed", actor=actor)

    def on_updated(self, previous: Invoice, current: Invoice,
                   rules: Optional[List[ReminderRule]] = None,
                   actor: Optional[str] = None) -> ScheduleResult:
        """
        Invoice edited. Reschedules only when reminder inputs changed or
        explicit rules were passed; otherwise returns an OK no-op result.
        """
        if rules is None and not reminder_inputs_changed(previous, current):
            logger.debug(f"Invoice {current.id} edit does not affect reminders")
            return ScheduleResult(
                outcome=ScheduleOutcome.OK,
                plan=SchedulePlan(invoice_id=current.id, eligible=reminders_eligible(current.status))
            )
        return self._run(current, "updated", rules=rules, actor=actor)

