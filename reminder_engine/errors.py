"""Error kinds raised and reported by the reminder engine."""


class ReminderEngineError(Exception):
    """Base exception for the reminder engine."""
    
    pass


class InvalidDateComputed(ReminderEngineError):
    """A single reminder's date fell outside the calendar; that reminder is skipped."""
    
    def __init__(self, message: str, invoice_id: str = None, offset_days: int = None):
        super().__init__(message)
        self.invoice_id = invoice_id
        self.offset_days = offset_days


class RuleParseError(ReminderEngineError):
    """A custom reminder rule carried an unusable ``days`` value."""
    
    pass


class StoreUnavailable(ReminderEngineError):
    """The reminder store could not be read or written."""
    
    pass


class MalformedPaymentTerms(ReminderEngineError):
    """Payment-terms configuration could not be parsed."""
    
    pass
