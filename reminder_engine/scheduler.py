"""
Reminder Scheduler Module

Builds the set of scheduled reminders for an invoice and replaces whatever
was scheduled before. Planning is pure (``plan``); persistence is a thin
transactional step (``apply``); ``schedule`` composes the two and never
raises into the invoice operation that triggered it.

Eligibility is derived from invoice status on every run:
- draft / paid: every ``scheduled`` row is purged, nothing is inserted
- sent, reminders off: same purge, the invoice still accrues late fees
- sent, system defaults: the smart schedule for its payment-term family
- sent, custom rules: enabled rules, ordered by date, kinds by position
"""

from datetime import datetime, timezone, date, timedelta
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from enum import Enum
import logging
import uuid

from .config import ReminderEngineConfig, get_config
from .errors import InvalidDateComputed, ReminderEngineError
from .logging_config import log_action
from .models import (
    Invoice, InvoiceStatus, ReminderKind, ReminderRule, ReminderStatus,
    ScheduledReminder, kind_for_position
)
from .payment_terms import smart_schedule
from .due_dates import effective_due_date
from .storage import ReminderStore


logger = logging.getLogger("reminder_engine.scheduler")


class ScheduleOutcome(Enum):
    """Result of a scheduling run as seen by the invoice handler"""
    OK = "ok"
    WARNING = "warning"


def reminders_eligible(status: InvoiceStatus) -> bool:
    """Only invoices awaiting payment carry scheduled reminders"""
    return status == InvoiceStatus.SENT


@dataclass
class SchedulePlan:
    """Store mutations computed for one invoice"""
    invoice_id: str
    eligible: bool
    to_delete: List[str] = field(default_factory=list)          # Stale scheduled rows plus duplicate failed rows
    duplicate_failed_ids: List[str] = field(default_factory=list)
    to_insert: List[ScheduledReminder] = field(default_factory=list)
    warnings: List[ReminderEngineError] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.to_delete and not self.to_insert


@dataclass
class ScheduleResult:
    """
    Outcome of ``ReminderScheduler.schedule``.

    ``WARNING`` means the invoice operation should carry on and log:
    either some reminders were skipped (``warnings``) or the run failed
    (``error``), in which case nothing was changed.
    """
    outcome: ScheduleOutcome
    plan: Optional[SchedulePlan] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[ReminderEngineError] = None

    @property
    def is_ok(self) -> bool:
        return self.outcome == ScheduleOutcome.OK

    @property
    def persisted(self) -> bool:
        """True when the plan reached the store"""
        return self.plan is not None and self.error is None

    @classmethod
    def from_plan(cls, plan: SchedulePlan) -> 'ScheduleResult':
        warnings = [str(warning) for warning in plan.warnings]
        outcome = ScheduleOutcome.WARNING if warnings else ScheduleOutcome.OK
        return cls(outcome=outcome, plan=plan, warnings=warnings)

    @classmethod
    def failed(cls, error: ReminderEngineError, plan: Optional[SchedulePlan] = None) -> 'ScheduleResult':
        warnings = [str(warning) for warning in plan.warnings] if plan else []
        warnings.append(str(error))
        return cls(outcome=ScheduleOutcome.WARNING, plan=plan, warnings=warnings, error=error)


def find_duplicate_failed(existing: List[ScheduledReminder]) -> List[str]:
    """
    Ids of failed rows to drop so each (invoice, kind) keeps one failed row.

    The newest row by ``created_at`` survives; equal timestamps fall back
    to the highest id so the choice is deterministic.
    """
    failed_by_kind: Dict[Tuple[str, ReminderKind], List[ScheduledReminder]] = {}
    for reminder in existing:
        if reminder.status == ReminderStatus.FAILED:
            failed_by_kind.setdefault((reminder.invoice_id, reminder.reminder_kind), []).append(reminder)

    duplicates = []
    for reminders in failed_by_kind.values():
        if len(reminders) > 1:
            reminders.sort(key=lambda r: (r.created_at, r.id), reverse=True)
            duplicates.extend(r.id for r in reminders[1:])
    return duplicates


class ReminderScheduler:
    """Plans and persists reminder schedules for invoices"""

    def __init__(
        self,
        store: ReminderStore,
        config: Optional[ReminderEngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.config = config or get_config()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def plan(
        self,
        invoice: Invoice,
        existing: Optional[List[ScheduledReminder]] = None,
        rules: Optional[List[ReminderRule]] = None
    ) -> SchedulePlan:
        """
        Compute the store mutations for an invoice without touching the store.

        Args:
            invoice: Invoice snapshot
            existing: Rows currently stored for the invoice
            rules: Custom rules overriding the invoice's stored rules; only
                consulted when the invoice does not use system defaults

        Returns:
            SchedulePlan replacing every scheduled row of the invoice
        """
        existing = existing or []
        duplicate_failed = find_duplicate_failed(existing)
        stale_scheduled = [r.id for r in existing if r.is_scheduled]

        plan = SchedulePlan(
            invoice_id=invoice.id,
            eligible=reminders_eligible(invoice.status),
            to_delete=stale_scheduled + duplicate_failed,
            duplicate_failed_ids=duplicate_failed
        )

        if not plan.eligible:
            logger.debug(f"Invoice {invoice.id} is {invoice.status.value}; no reminders scheduled")
            return plan

        settings = invoice.reminder_settings
        if settings is None or not settings.enabled:
            logger.debug(f"Reminders disabled for invoice {invoice.id}")
            return plan

        base_date = effective_due_date(invoice)
        if settings.use_system_defaults:
            offsets = [(entry.offset_days, entry.kind) for entry in smart_schedule(
                invoice.payment_terms,
                short_terms_max_net_days=self.config.short_terms_max_net_days,
                default_label=self.config.default_payment_term
            )]
            plan.to_insert, plan.warnings = self._build_rows(invoice.id, base_date, offsets)
        else:
            active_rules = [rule for rule in (rules if rules is not None else settings.custom_rules) if rule.enabled]
            plan.to_insert, plan.warnings = self._build_custom_rows(invoice.id, base_date, active_rules)

        return plan

    def apply(self, plan: SchedulePlan) -> None:
        """
        Persist a plan as one unit: purge scheduled rows, drop duplicate
        failed rows, insert the new schedule.

        Raises:
            StoreUnavailable: If the store rejected any step; the store is
                rolled back to its prior state
        """
        with self.store.atomic():
            self.store.delete_scheduled(plan.invoice_id)
            if plan.duplicate_failed_ids:
                self.store.delete_by_ids(plan.duplicate_failed_ids)
            if plan.to_insert:
                self.store.insert_many(plan.to_insert)

    def schedule(
        self,
        invoice: Invoice,
        rules: Optional[List[ReminderRule]] = None,
        actor: Optional[str] = None
    ) -> ScheduleResult:
        """
        Rebuild and persist the reminder schedule for an invoice.

        Never raises: a store failure or any other error is logged and
        returned as a WARNING result so the caller's invoice operation
        still succeeds.
        """
        actor = actor or self.config.system_actor
        plan = None
        try:
            existing = self.store.list_by_invoice(invoice.id)
            plan = self.plan(invoice, existing, rules)
            self.apply(plan)
        except ReminderEngineError as e:
            return self._failed(invoice, actor, e, plan)
        except Exception as e:
            logger.error(f"Unexpected error scheduling reminders for invoice {invoice.id}", exc_info=True)
            error = ReminderEngineError(f"Unexpected scheduling error: {e}")
            error.__cause__ = e
            return self._failed(invoice, actor, error, plan)

        for warning in plan.warnings:
            logger.warning(f"Invoice {invoice.id}: {warning}")

        log_action(
            logger, "info",
            f"Scheduled {len(plan.to_insert)} reminders for invoice {invoice.id}",
            actor=actor, action="reminders_rescheduled",
            resource="invoice_reminders", invoice_id=invoice.id,
            extra={
                "status": invoice.status.value,
                "inserted": len(plan.to_insert),
                "removed_scheduled": len(plan.to_delete) - len(plan.duplicate_failed_ids),
                "removed_duplicate_failed": len(plan.duplicate_failed_ids),
                "skipped": len(plan.warnings),
            }
        )
        return ScheduleResult.from_plan(plan)

    # Private helper methods

    def _failed(self, invoice: Invoice, actor: str, error: ReminderEngineError,
                plan: Optional[SchedulePlan]) -> ScheduleResult:
        log_action(
            logger, "warning",
            f"Reminder scheduling failed for invoice {invoice.id}: {error}",
            actor=actor, action="reminders_schedule_failed",
            resource="invoice_reminders", invoice_id=invoice.id
        )
        return ScheduleResult.failed(error, plan)

    def _build_custom_rows(
        self, invoice_id: str, base_date: date, rules: List[ReminderRule]
    ) -> Tuple[List[ScheduledReminder], List[ReminderEngineError]]:
        """Rows for custom rules; kinds follow chronological order, not rule order"""
        dated: List[Tuple[date, int]] = []
        warnings: List[ReminderEngineError] = []
        for rule in rules:
            try:
                dated.append((self._offset_date(invoice_id, base_date, rule.signed_offset), rule.signed_offset))
            except InvalidDateComputed as e:
                warnings.append(e)

        # Stable sort keeps rule order for reminders landing on the same day
        dated.sort(key=lambda item: item[0])

        created_at = self.clock()
        rows = [
            self._new_row(invoice_id, kind_for_position(position), offset, scheduled_at, created_at)
            for position, (scheduled_at, offset) in enumerate(dated)
        ]
        return rows, warnings

    def _build_rows(
        self, invoice_id: str, base_date: date, offsets: List[Tuple[int, ReminderKind]]
    ) -> Tuple[List[ScheduledReminder], List[ReminderEngineError]]:
        """Rows for a schedule whose kinds are already fixed"""
        rows = []
        warnings: List[ReminderEngineError] = []
        created_at = self.clock()
        for offset, kind in offsets:
            try:
                scheduled_at = self._offset_date(invoice_id, base_date, offset)
            except InvalidDateComputed as e:
                warnings.append(e)
                continue
            rows.append(self._new_row(invoice_id, kind, offset, scheduled_at, created_at))
        return rows, warnings

    @staticmethod
    def _offset_date(invoice_id: str, base_date: date, offset_days: int) -> date:
        """
        Shift the base date by a signed number of days.

        Raises:
            InvalidDateComputed: If the result leaves the calendar range
        """
        try:
            return base_date + timedelta(days=offset_days)
        except (OverflowError, TypeError, ValueError) as e:
            raise InvalidDateComputed(
                f"Skipped reminder at offset {offset_days!r} from {base_date}: {e}",
                invoice_id=invoice_id, offset_days=offset_days
            )

    @staticmethod
    def _new_row(invoice_id: str, kind: ReminderKind, offset: int,
                 scheduled_at: date, created_at: datetime) -> ScheduledReminder:
        return ScheduledReminder(
            id=str(uuid.uuid4()),
            invoice_id=invoice_id,
            reminder_kind=kind,
            overdue_days=offset,
            scheduled_at=scheduled_at,
            status=ReminderStatus.SCHEDULED,
            email_id=None,
            created_at=created_at
        )
