"""
Currency Module

ISO 4217 currency codes and an immutable Money type. Late-fee math runs on
raw Decimal values; Money applies the currency's precision when a figure is
shown to a client. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision and display symbol"""
    USD = ("USD", 2, "$")
    EUR = ("EUR", 2, "€")
    GBP = ("GBP", 2, "£")
    JPY = ("JPY", 0, "¥")
    CAD = ("CAD", 2, "C$")
    AUD = ("AUD", 2, "A$")
    INR = ("INR", 2, "₹")
    CNY = ("CNY", 2, "¥")
    CHF = ("CHF", 2, "CHF")
    SGD = ("SGD", 2, "S$")
    HKD = ("HKD", 2, "HK$")
    NZD = ("NZD", 2, "NZ$")
    MXN = ("MXN", 2, "MX$")
    BRL = ("BRL", 2, "R$")
    ZAR = ("ZAR", 2, "R")
    
    def __init__(self, code: str, precision: int, symbol: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol
    
    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by ISO code (case-insensitive)"""
        try:
            return cls[code.strip().upper()]
        except (KeyError, AttributeError):
            raise ValueError(f"Unsupported currency code: {code!r}")


def to_decimal(value: Union[Decimal, int, float, str, None], default: Decimal = Decimal('0')) -> Decimal:
    """Coerce a stored numeric value to Decimal, going through str for floats"""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Not a numeric amount: {value!r}")


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation rounded to its currency's precision.
    """
    amount: Decimal
    currency: Currency
    
    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        
        # Round to currency precision
        rounded = self.amount.quantize(
            Decimal('0.1') ** self.currency.precision,
            rounding=ROUND_HALF_UP
        )
        object.__setattr__(self, 'amount', rounded)
    
    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency
    
    def __hash__(self) -> int:
        return hash((self.amount, self.currency))
    
    def to_string(self) -> str:
        """Format for display, e.g. ``USD 1,050.00``"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
    
    def to_symbol_string(self) -> str:
        """Format with the currency symbol, e.g. ``$1,050.00``"""
        if self.currency.precision == 0:
            return f"{self.currency.symbol}{self.amount:,.0f}"
        return f"{self.currency.symbol}{self.amount:,.{self.currency.precision}f}"
