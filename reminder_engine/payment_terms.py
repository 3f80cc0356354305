"""
Payment Terms Module

Maps payment-term labels to term families and to the smart reminder
schedule each family uses. Known labels are matched case- and
whitespace-insensitively; anything else goes through the net-days
heuristic in ``parse_net_days``.
"""

from dataclasses import dataclass
from typing import List, Optional
from enum import Enum
import re

from .models import PaymentTerms, ReminderKind, REMINDER_KIND_ORDER


DUE_ON_RECEIPT = "Due on Receipt"
NET_15 = "Net 15"
NET_30 = "Net 30"
TWO_TEN_NET_30 = "2/10 Net 30"

_NET_DAYS_PATTERN = re.compile(r"\d+")


class TermFamily(Enum):
    """Schedule families selected from a payment-term label"""
    DUE_ON_RECEIPT = "due_on_receipt"
    NET_15 = "net_15"
    NET_30 = "net_30"
    EARLY_PAYMENT_DISCOUNT = "2_10_net_30"
    CUSTOM_SHORT = "custom_short"   # Custom label, net days <= short threshold
    CUSTOM_LONG = "custom_long"     # Custom label, net days above threshold


# Offsets in days from the base date, in kind order (friendly, polite, firm, urgent)
SMART_SCHEDULE_OFFSETS = {
    TermFamily.DUE_ON_RECEIPT: (1, 3, 7, 14),
    TermFamily.NET_15: (-7, -3, 1, 7),
    TermFamily.NET_30: (-14, -7, 1, 7),
    TermFamily.EARLY_PAYMENT_DISCOUNT: (-2, 1, 7, 14),
    TermFamily.CUSTOM_SHORT: (-7, -3, 1, 7),
    TermFamily.CUSTOM_LONG: (-14, -7, 1, 7),
}

_KNOWN_LABELS = {
    "due on receipt": TermFamily.DUE_ON_RECEIPT,
    "net 15": TermFamily.NET_15,
    "net 30": TermFamily.NET_30,
    "2/10 net 30": TermFamily.EARLY_PAYMENT_DISCOUNT,
}


@dataclass(frozen=True)
class SmartReminder:
    """One entry of a smart schedule"""
    kind: ReminderKind
    offset_days: int


def normalize_label(label: Optional[str]) -> str:
    """Lower-case a term label and collapse inner whitespace"""
    if not label:
        return ""
    return " ".join(label.split()).lower()


def is_due_on_receipt(payment_terms: Optional[PaymentTerms]) -> bool:
    """
    True when enabled terms say "Due on Receipt".

    Either the ``terms`` label or the ``default_option`` alias may carry it.
    """
    if payment_terms is None or not payment_terms.enabled:
        return False
    due_on_receipt = normalize_label(DUE_ON_RECEIPT)
    return (normalize_label(payment_terms.terms) == due_on_receipt
            or normalize_label(payment_terms.default_option) == due_on_receipt)


def parse_net_days(label: Optional[str]) -> Optional[int]:
    """
    Extract the net-days figure from a custom term label.

    Takes the first integer in the label, so "Net 45" and "45 days net" both
    give 45. Returns None when the label contains no digits.
    """
    if not label:
        return None
    match = _NET_DAYS_PATTERN.search(label)
    if match is None:
        return None
    return int(match.group(0))


def term_family(label: Optional[str], short_terms_max_net_days: int = 15) -> TermFamily:
    """
    Select the schedule family for a term label.

    Known labels map directly. Other labels are classified by net days:
    up to ``short_terms_max_net_days`` is short, anything longer is long.
    A label without digits (or no label) uses the Net 30 family.
    """
    normalized = normalize_label(label)
    if normalized in _KNOWN_LABELS:
        return _KNOWN_LABELS[normalized]

    net_days = parse_net_days(normalized)
    if net_days is None:
        return TermFamily.NET_30
    if net_days <= short_terms_max_net_days:
        return TermFamily.CUSTOM_SHORT
    return TermFamily.CUSTOM_LONG


def effective_term_label(payment_terms: Optional[PaymentTerms], default_label: str = NET_30) -> str:
    """The label that drives the smart schedule; disabled or absent terms use the default"""
    if payment_terms is None or not payment_terms.enabled or not payment_terms.label:
        return default_label
    return payment_terms.label


def smart_schedule(payment_terms: Optional[PaymentTerms],
                   short_terms_max_net_days: int = 15,
                   default_label: str = NET_30) -> List[SmartReminder]:
    """Smart schedule entries for an invoice's payment terms, in kind order"""
    label = effective_term_label(payment_terms, default_label)
    offsets = SMART_SCHEDULE_OFFSETS[term_family(label, short_terms_max_net_days)]
    return [
        SmartReminder(kind=kind, offset_days=offset)
        for kind, offset in zip(REMINDER_KIND_ORDER, offsets)
    ]


def describe_terms(payment_terms: Optional[PaymentTerms]) -> Optional[str]:
    """Display label for enabled terms, None otherwise"""
    if payment_terms is None or not payment_terms.enabled:
        return None
    return payment_terms.label
