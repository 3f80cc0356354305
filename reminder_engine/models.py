"""
Invoice and Reminder Models

Read-only invoice snapshots as seen by the engine, the payment-term,
late-fee and reminder policies stored on them, and the scheduled-reminder
rows the engine writes. Parsing is tolerant: invoice rows arrive from the
surrounding application with JSON-encoded settings and mixed key styles,
and a bad nested setting must degrade to "not configured" instead of
failing the invoice operation that triggered the engine.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Union
from enum import Enum
import json
import logging

from .config import get_config
from .currency import Currency, to_decimal
from .errors import MalformedPaymentTerms, RuleParseError


logger = logging.getLogger("reminder_engine.models")


class InvoiceStatus(Enum):
    """Stored invoice status. "overdue" is derived, never stored."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"

    @classmethod
    def parse(cls, value: Union['InvoiceStatus', str]) -> 'InvoiceStatus':
        """Parse a stored status; ``pending`` is an alias of ``sent``"""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized == "pending":
            return cls.SENT
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown invoice status: {value!r}")


class LateFeeType(Enum):
    """How a late fee is computed"""
    FIXED = "fixed"             # Flat amount in invoice currency
    PERCENTAGE = "percentage"   # Percent of invoice total


class RuleDirection(Enum):
    """Which side of the due date a custom rule fires on"""
    BEFORE = "before"
    AFTER = "after"


class ReminderKind(Enum):
    """Reminder tone, assigned by temporal position"""
    FRIENDLY = "friendly"
    POLITE = "polite"
    FIRM = "firm"
    URGENT = "urgent"


# Positional order used when assigning kinds to a sorted schedule
REMINDER_KIND_ORDER = [
    ReminderKind.FRIENDLY,
    ReminderKind.POLITE,
    ReminderKind.FIRM,
    ReminderKind.URGENT,
]


def kind_for_position(position: int) -> ReminderKind:
    """Kind for the n-th reminder of a schedule; positions past the end stay urgent"""
    return REMINDER_KIND_ORDER[min(position, len(REMINDER_KIND_ORDER) - 1)]


class ReminderStatus(Enum):
    """Delivery state of a reminder row"""
    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"


def parse_calendar_date(value: Union[date, datetime, str, None]) -> Optional[date]:
    """
    Coerce a stored date or timestamp to a calendar date.

    Returns None for missing or unparseable input. Timestamps keep their
    own calendar day; no timezone conversion is applied.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def parse_timestamp(value: Union[datetime, date, str, None]) -> Optional[datetime]:
    """Coerce a stored timestamp to an aware datetime (naive values are UTC), or None when unparseable"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def parse_currency(value: Union[Currency, str, None]) -> Currency:
    """Resolve a stored currency code; missing or unknown codes use the configured default"""
    if isinstance(value, Currency):
        return value
    default_code = get_config().default_currency
    if not value:
        return Currency.from_code(default_code)
    try:
        return Currency.from_code(value)
    except ValueError:
        logger.warning(f"Unknown currency {value!r}; using {default_code}")
        return Currency.from_code(default_code)


def _load_json_setting(raw: Any, setting: str) -> Any:
    """Decode a nested setting that may be stored as a JSON string"""
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"{setting} is not valid JSON: {e}")
    return raw


def _first_present(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class PaymentTerms:
    """Payment terms attached to an invoice"""
    enabled: bool = False
    terms: str = ""
    default_option: Optional[str] = None  # Alias label some invoices carry instead of terms

    @property
    def label(self) -> Optional[str]:
        """The effective term label: ``terms`` first, then ``default_option``"""
        return self.terms or self.default_option or None

    @classmethod
    def from_value(cls, raw: Any) -> Optional['PaymentTerms']:
        """
        Build payment terms from a stored value.

        Accepts a PaymentTerms, a mapping, a JSON string or None.

        Raises:
            MalformedPaymentTerms: If the value cannot be interpreted
        """
        if raw is None or isinstance(raw, cls):
            return raw
        try:
            data = _load_json_setting(raw, "payment terms")
        except ValueError as e:
            raise MalformedPaymentTerms(str(e))
        if data is None:
            return None
        if not isinstance(data, dict):
            raise MalformedPaymentTerms(f"Payment terms must be an object, got {type(data).__name__}")
        terms = data.get("terms") or ""
        default_option = _first_present(data, "defaultOption", "default_option")
        if not isinstance(terms, str) or (default_option is not None and not isinstance(default_option, str)):
            raise MalformedPaymentTerms("Payment term labels must be strings")
        return cls(
            enabled=bool(data.get("enabled", False)),
            terms=terms.strip(),
            default_option=default_option.strip() if default_option else None
        )


def parse_payment_terms(raw: Any) -> Optional[PaymentTerms]:
    """Tolerant variant of PaymentTerms.from_value: malformed input means no terms"""
    try:
        return PaymentTerms.from_value(raw)
    except MalformedPaymentTerms as e:
        logger.warning(f"Ignoring malformed payment terms: {e}")
        return None


@dataclass
class LateFeePolicy:
    """Late fee configuration for an invoice"""
    enabled: bool
    fee_type: LateFeeType
    amount: Decimal
    grace_period_days: int = 0

    def __post_init__(self):
        self.amount = to_decimal(self.amount)
        if self.amount < Decimal('0'):
            raise ValueError("Late fee amount must be non-negative")
        if self.grace_period_days < 0:
            raise ValueError("Grace period must be non-negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LateFeePolicy':
        """Build from a stored mapping (``type``/``fee_type``, ``gracePeriod``/``gracePeriodDays``)"""
        grace = _first_present(data, "grace_period_days", "gracePeriodDays", "gracePeriod", default=0)
        return cls(
            enabled=bool(data.get("enabled", False)),
            fee_type=LateFeeType(_first_present(data, "fee_type", "type", default="fixed")),
            amount=to_decimal(data.get("amount")),
            grace_period_days=int(grace)
        )


def parse_late_fees(raw: Any) -> Optional[LateFeePolicy]:
    """Parse stored late fee settings; unusable settings mean no late fee"""
    if raw is None or isinstance(raw, LateFeePolicy):
        return raw
    try:
        data = _load_json_setting(raw, "late fees")
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ValueError(f"late fees must be an object, got {type(data).__name__}")
        return LateFeePolicy.from_dict(data)
    except (ValueError, TypeError) as e:
        logger.warning(f"Ignoring malformed late fee settings: {e}")
        return None


def parse_rule_days(value: Any) -> int:
    """
    Parse a rule's day count.

    Raises:
        RuleParseError: If the value is not a non-negative whole number
    """
    if isinstance(value, bool):
        raise RuleParseError(f"Rule days must be a number, got {value!r}")
    if value is None or value == "":
        return 0
    try:
        days = int(Decimal(str(value).strip()))
    except (ArithmeticError, ValueError):
        raise RuleParseError(f"Rule days must be a number, got {value!r}")
    if days < 0:
        raise RuleParseError(f"Rule days must be non-negative, got {days}")
    return days


@dataclass
class ReminderRule:
    """User-authored reminder rule, consulted only when system defaults are off"""
    id: str
    direction: RuleDirection
    days: int
    enabled: bool = True

    @property
    def signed_offset(self) -> int:
        """Offset from the base date; negative before, positive after"""
        if self.direction == RuleDirection.BEFORE:
            return -self.days
        return self.days

    @classmethod
    def from_dict(cls, data: Dict[str, Any], position: int = 0) -> 'ReminderRule':
        """
        Build a rule from a stored mapping.

        ``direction`` may also be stored as ``type``. A non-numeric or
        negative day count is logged and treated as zero; a missing
        ``enabled`` flag means enabled.
        """
        rule_id = str(data.get("id") or f"rule-{position + 1}")
        try:
            days = parse_rule_days(data.get("days"))
        except RuleParseError as e:
            logger.warning(f"Reminder rule {rule_id}: {e}; using 0 days")
            days = 0
        direction = str(_first_present(data, "direction", "type", default="after")).strip().lower()
        return cls(
            id=rule_id,
            direction=RuleDirection(direction),
            days=days,
            enabled=bool(data.get("enabled", True))
        )


@dataclass
class ReminderSettings:
    """Reminder configuration for an invoice"""
    enabled: bool = False
    use_system_defaults: bool = True
    custom_rules: List[ReminderRule] = field(default_factory=list)

    @property
    def active_rules(self) -> List[ReminderRule]:
        """Custom rules that are switched on"""
        return [rule for rule in self.custom_rules if rule.enabled]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReminderSettings':
        """Build from a stored mapping; rules may live under ``customRules`` or ``rules``"""
        raw_rules = _first_present(data, "custom_rules", "customRules", "rules", default=[])
        rules = []
        for position, raw_rule in enumerate(raw_rules):
            if isinstance(raw_rule, ReminderRule):
                rules.append(raw_rule)
                continue
            try:
                rules.append(ReminderRule.from_dict(raw_rule, position))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping unreadable reminder rule at position {position}: {e}")
        return cls(
            enabled=bool(data.get("enabled", False)),
            use_system_defaults=bool(_first_present(data, "use_system_defaults", "useSystemDefaults", default=True)),
            custom_rules=rules
        )


def parse_reminder_settings(raw: Any) -> Optional[ReminderSettings]:
    """Parse stored reminder settings; unusable settings mean reminders are off"""
    if raw is None or isinstance(raw, ReminderSettings):
        return raw
    try:
        data = _load_json_setting(raw, "reminder settings")
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ValueError(f"reminder settings must be an object, got {type(data).__name__}")
        return ReminderSettings.from_dict(data)
    except (ValueError, TypeError) as e:
        logger.warning(f"Ignoring malformed reminder settings: {e}")
        return None


@dataclass
class Invoice:
    """Snapshot of the invoice fields the engine reads"""
    id: str
    status: InvoiceStatus
    due_date: date
    issue_date: Optional[date] = None
    updated_at: Optional[datetime] = None
    total: Decimal = Decimal('0')
    currency: Currency = Currency.USD
    payment_terms: Optional[PaymentTerms] = None
    late_fees: Optional[LateFeePolicy] = None
    reminder_settings: Optional[ReminderSettings] = None
    amount_paid: Decimal = Decimal('0')

    def __post_init__(self):
        self.status = InvoiceStatus.parse(self.status)
        self.total = to_decimal(self.total)
        self.amount_paid = to_decimal(self.amount_paid)
        if self.total < Decimal('0'):
            raise ValueError("Invoice total must be non-negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Invoice':
        """
        Build a snapshot from a raw invoice row.

        Accepts snake_case columns or camelCase keys. Nested settings may be
        JSON strings; malformed nested settings are dropped with a warning.

        Raises:
            ValueError: If the id, status or due date is missing or invalid
        """
        due_date = parse_calendar_date(_first_present(data, "due_date", "dueDate"))
        if due_date is None:
            raise ValueError(f"Invoice {data.get('id')!r} has no valid due date")
        if not data.get("id"):
            raise ValueError("Invoice id is required")

        return cls(
            id=str(data["id"]),
            status=InvoiceStatus.parse(data.get("status", "draft")),
            due_date=due_date,
            issue_date=parse_calendar_date(_first_present(data, "issue_date", "issueDate")),
            updated_at=parse_timestamp(_first_present(data, "updated_at", "updatedAt")),
            total=to_decimal(data.get("total")),
            currency=parse_currency(data.get("currency")),
            payment_terms=parse_payment_terms(_first_present(data, "payment_terms", "paymentTerms")),
            late_fees=parse_late_fees(_first_present(data, "late_fees", "lateFees")),
            reminder_settings=parse_reminder_settings(_first_present(data, "reminder_settings", "reminderSettings")),
            amount_paid=to_decimal(_first_present(data, "amount_paid", "amountPaid", "total_paid"))
        )


@dataclass
class ScheduledReminder:
    """A reminder the delivery worker should send on ``scheduled_at``"""
    id: str
    invoice_id: str
    reminder_kind: ReminderKind
    overdue_days: int  # Signed offset; negative means before the due date
    scheduled_at: date
    status: ReminderStatus = ReminderStatus.SCHEDULED
    email_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_scheduled(self) -> bool:
        return self.status == ReminderStatus.SCHEDULED

    def content_key(self) -> tuple:
        """Identity-free view of the row, used to compare schedules"""
        return (
            self.invoice_id,
            self.reminder_kind.value,
            self.overdue_days,
            self.scheduled_at.isoformat(),
            self.status.value,
            self.email_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "reminder_kind": self.reminder_kind.value,
            "overdue_days": self.overdue_days,
            "scheduled_at": self.scheduled_at.isoformat(),
            "status": self.status.value,
            "email_id": self.email_id,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduledReminder':
        """Create instance from dictionary"""
        created_at = parse_timestamp(data.get("created_at"))
        scheduled_at = parse_calendar_date(data["scheduled_at"])
        if scheduled_at is None:
            raise ValueError(f"Reminder {data.get('id')!r} has an invalid scheduled_at")
        return cls(
            id=str(data["id"]),
            invoice_id=str(data["invoice_id"]),
            reminder_kind=ReminderKind(data.get("reminder_kind") or "friendly"),
            overdue_days=int(data.get("overdue_days") or 0),
            scheduled_at=scheduled_at,
            status=ReminderStatus(data.get("status", "scheduled")),
            email_id=data.get("email_id"),
            created_at=created_at or datetime.fromtimestamp(0, timezone.utc)
        )
