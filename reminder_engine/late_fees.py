"""
Late Fee Module

Computes, at read time, the late fee an invoice has accrued and what the
client owes in total. Nothing is persisted: the figures are a function of
the invoice snapshot and today's date.

Rules:
- Only sent invoices accrue fees; drafts and paid invoices never do.
- Overdue days come from the due date classifier, so "Due on Receipt"
  invoices are not overdue on their send day.
- The grace period gates the fee: it is charged in full once the invoice
  is more than ``grace_period_days`` overdue, and not at all before that.
- Percentage fees apply to the invoice total, not to a remaining balance.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Optional
import logging

from .config import ReminderEngineConfig, get_config
from .currency import Currency, Money
from .models import Invoice, InvoiceStatus, LateFeePolicy, LateFeeType
from .due_dates import classify_invoice, DEFAULT_DUE_SOON_DAYS


logger = logging.getLogger("reminder_engine.late_fees")


@dataclass(frozen=True)
class LateFeeCharges:
    """Late fee evaluation for one invoice; amounts are unrounded"""
    has_late_fee: bool
    late_fee_amount: Decimal
    total_payable: Decimal
    chargeable_overdue_days: int
    currency: Currency = Currency.USD
    total_paid: Decimal = Decimal('0')

    @property
    def remaining_balance(self) -> Decimal:
        """What is still owed after partial payments"""
        return self.total_payable - self.total_paid

    @property
    def is_partially_paid(self) -> bool:
        return self.total_paid > Decimal('0') and self.remaining_balance > Decimal('0')

    @property
    def late_fee_money(self) -> Money:
        """Late fee rounded to currency precision for display"""
        return Money(self.late_fee_amount, self.currency)

    @property
    def total_payable_money(self) -> Money:
        """Total payable rounded to currency precision for display"""
        return Money(self.total_payable, self.currency)

    @property
    def remaining_balance_money(self) -> Money:
        return Money(self.remaining_balance, self.currency)


class LateFeeCalculator:
    """Evaluates late fees for invoice snapshots"""

    def __init__(self, due_soon_days: int = DEFAULT_DUE_SOON_DAYS):
        self.due_soon_days = due_soon_days

    @classmethod
    def from_config(cls, config: Optional[ReminderEngineConfig] = None) -> 'LateFeeCalculator':
        config = config or get_config()
        return cls(due_soon_days=config.due_soon_days)

    def compute_charges(self, invoice: Invoice, as_of: Optional[date] = None) -> LateFeeCharges:
        """
        Compute the late fee and total payable for an invoice.

        Args:
            invoice: Invoice snapshot
            as_of: Evaluation date (defaults to today)

        Returns:
            LateFeeCharges; ``has_late_fee`` is False whenever no fee applies
        """
        if invoice.status != InvoiceStatus.SENT:
            return self._no_fee(invoice)

        policy = invoice.late_fees
        if policy is None or not policy.enabled:
            return self._no_fee(invoice)

        classification = classify_invoice(invoice, as_of=as_of, due_soon_days=self.due_soon_days)
        overdue_days = classification.overdue_days
        if overdue_days <= 0:
            return self._no_fee(invoice)

        chargeable_days = overdue_days - policy.grace_period_days
        if chargeable_days <= 0:
            logger.debug(
                f"Invoice {invoice.id} is {overdue_days} days overdue, "
                f"within {policy.grace_period_days} day grace period"
            )
            return self._no_fee(invoice)

        fee = self.fee_amount(policy, invoice.total)
        return LateFeeCharges(
            has_late_fee=True,
            late_fee_amount=fee,
            total_payable=invoice.total + fee,
            chargeable_overdue_days=chargeable_days,
            currency=invoice.currency,
            total_paid=invoice.amount_paid
        )

    @staticmethod
    def fee_amount(policy: LateFeePolicy, total: Decimal) -> Decimal:
        """Fee a policy charges against an invoice total"""
        if policy.fee_type == LateFeeType.FIXED:
            return policy.amount
        return total * policy.amount / Decimal('100')

    @staticmethod
    def _no_fee(invoice: Invoice) -> LateFeeCharges:
        return LateFeeCharges(
            has_late_fee=False,
            late_fee_amount=Decimal('0'),
            total_payable=invoice.total,
            chargeable_overdue_days=0,
            currency=invoice.currency,
            total_paid=invoice.amount_paid
        )


def describe_policy(policy: Optional[LateFeePolicy], currency: Currency = Currency.USD) -> Optional[str]:
    """Short summary such as ``$50 after 7 days`` or ``1.5% after 10 days``"""
    if policy is None or not policy.enabled:
        return None
    if policy.fee_type == LateFeeType.FIXED:
        amount = f"{currency.symbol}{policy.amount.normalize():f}"
    else:
        amount = f"{policy.amount.normalize():f}%"
    return f"{amount} after {policy.grace_period_days} days"
