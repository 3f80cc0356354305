"""
Reminder Reporting Module

Read-only views over the reminder store: per-kind and per-status counts,
the delivery queue, and short display summaries of an invoice's reminder
configuration. Supports dict, JSON and CSV export.
"""

from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union
from enum import Enum
import csv
import io
import json

from .models import ReminderKind, ReminderSettings, ReminderStatus, ScheduledReminder
from .storage import ReminderStore


class ReportFormat(Enum):
    """Output formats for reports"""
    DICT = "dict"
    CSV = "csv"
    JSON = "json"


@dataclass
class ReminderSummary:
    """Counts over a set of reminder rows"""
    generated_at: datetime
    total: int = 0
    by_kind: Dict[str, int] = field(default_factory=dict)
    by_status: Dict[str, int] = field(default_factory=dict)
    next_scheduled_at: Optional[date] = None
    invoice_count: int = 0


class ReminderReporter:
    """Statistics and queue views over stored reminders"""

    def __init__(self, store: ReminderStore):
        self.store = store

    def summarize(self, invoice_ids: Optional[Iterable[str]] = None) -> ReminderSummary:
        """Summarize all rows, or only the rows of the given invoices"""
        reminders = self._select(invoice_ids)

        summary = ReminderSummary(
            generated_at=datetime.now(timezone.utc),
            by_kind={kind.value: 0 for kind in ReminderKind},
            by_status={status.value: 0 for status in ReminderStatus}
        )
        summary.total = len(reminders)
        summary.invoice_count = len({r.invoice_id for r in reminders})

        for reminder in reminders:
            summary.by_kind[reminder.reminder_kind.value] += 1
            summary.by_status[reminder.status.value] += 1

        upcoming = [r.scheduled_at for r in reminders if r.is_scheduled]
        summary.next_scheduled_at = min(upcoming) if upcoming else None
        return summary

    def due_queue(self, as_of: Optional[date] = None) -> List[ScheduledReminder]:
        """Scheduled reminders the delivery worker should send by ``as_of`` (default today)"""
        return self.store.list_due(as_of or date.today())

    def export_summary(self, summary: ReminderSummary, format: ReportFormat) -> Union[Dict, str]:
        """Export a summary in the requested format"""
        if format == ReportFormat.DICT:
            return {
                'generated_at': summary.generated_at.isoformat(),
                'total': summary.total,
                'invoice_count': summary.invoice_count,
                'by_kind': dict(summary.by_kind),
                'by_status': dict(summary.by_status),
                'next_scheduled_at': summary.next_scheduled_at.isoformat() if summary.next_scheduled_at else None
            }

        elif format == ReportFormat.JSON:
            return json.dumps(self.export_summary(summary, ReportFormat.DICT), indent=2, default=str)

        elif format == ReportFormat.CSV:
            output = io.StringIO()
            writer = csv.DictWriter(output, fieldnames=["dimension", "value", "count"])
            writer.writeheader()
            for kind, count in summary.by_kind.items():
                writer.writerow({"dimension": "kind", "value": kind, "count": count})
            for status, count in summary.by_status.items():
                writer.writerow({"dimension": "status", "value": status, "count": count})
            csv_content = output.getvalue()
            output.close()
            return csv_content

        else:
            raise ValueError(f"Unsupported export format: {format}")

    def _select(self, invoice_ids: Optional[Iterable[str]]) -> List[ScheduledReminder]:
        if invoice_ids is None:
            return self.store.list_all()
        reminders: List[ScheduledReminder] = []
        for invoice_id in dict.fromkeys(invoice_ids):
            reminders.extend(self.store.list_by_invoice(invoice_id))
        return reminders


def describe_reminders(settings: Optional[ReminderSettings]) -> Optional[str]:
    """``Smart System``, ``N Custom Rule(s)``, or None when reminders are off"""
    if settings is None or not settings.enabled:
        return None
    if settings.use_system_defaults:
        return "Smart System"
    active = len(settings.active_rules)
    return f"{active} Custom Rule{'s' if active != 1 else ''}"
