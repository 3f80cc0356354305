"""
Test suite for payment terms module

Tests term family selection for known labels, the net-days heuristic for
custom labels, and the smart schedule offsets each family produces.
"""

import pytest

from reminder_engine.models import PaymentTerms, ReminderKind
from reminder_engine.payment_terms import (
    TermFamily, parse_net_days, term_family, smart_schedule,
    is_due_on_receipt, effective_term_label, describe_terms, normalize_label
)


class TestParseNetDays:
    """Test extraction of net days from custom labels"""
    
    def test_first_number_wins(self):
        """Test that the first integer in the label is used"""
        assert parse_net_days("Net 45") == 45
        assert parse_net_days("45 days net") == 45
        assert parse_net_days("Net 60, 1% monthly") == 60
    
    def test_no_digits(self):
        """Test labels without digits"""
        assert parse_net_days("Upon completion") is None
        assert parse_net_days("") is None
        assert parse_net_days(None) is None


class TestTermFamily:
    """Test family selection for labelled and unlabelled terms"""
    
    def test_known_labels(self):
        """Test the labels with dedicated schedules"""
        assert term_family("Due on Receipt") == TermFamily.DUE_ON_RECEIPT
        assert term_family("Net 15") == TermFamily.NET_15
        assert term_family("Net 30") == TermFamily.NET_30
        assert term_family("2/10 Net 30") == TermFamily.EARLY_PAYMENT_DISCOUNT
    
    def test_known_labels_ignore_case_and_spacing(self):
        """Test that matching is case- and whitespace-insensitive"""
        assert term_family("  due ON   receipt ") == TermFamily.DUE_ON_RECEIPT
        assert term_family("NET 15") == TermFamily.NET_15
        assert normalize_label("  2/10   Net  30 ") == "2/10 net 30"
    
    def test_discount_label_not_read_as_two_days(self):
        """Test that 2/10 Net 30 is matched before the net-days heuristic"""
        assert term_family("2/10 Net 30") != TermFamily.CUSTOM_SHORT
    
    def test_custom_short_and_long(self):
        """Test the short-vs-long heuristic for unknown labels"""
        assert term_family("Net 7") == TermFamily.CUSTOM_SHORT
        assert term_family("Net 10") == TermFamily.CUSTOM_SHORT
        assert term_family("15 days") == TermFamily.CUSTOM_SHORT
        assert term_family("Net 16") == TermFamily.CUSTOM_LONG
        assert term_family("Net 60") == TermFamily.CUSTOM_LONG
    
    def test_custom_threshold(self):
        """Test a configured short-terms threshold"""
        assert term_family("Net 20", short_terms_max_net_days=20) == TermFamily.CUSTOM_SHORT
        assert term_family("Net 21", short_terms_max_net_days=20) == TermFamily.CUSTOM_LONG
    
    def test_no_digits_defaults_to_net_30(self):
        """Test that labels without digits use the Net 30 family"""
        assert term_family("When convenient") == TermFamily.NET_30
        assert term_family(None) == TermFamily.NET_30


class TestSmartSchedule:
    """Test smart schedule offsets and kind order"""
    
    @pytest.mark.parametrize("label,offsets", [
        ("Due on Receipt", [1, 3, 7, 14]),
        ("Net 15", [-7, -3, 1, 7]),
        ("Net 30", [-14, -7, 1, 7]),
        ("2/10 Net 30", [-2, 1, 7, 14]),
        ("Net 10", [-7, -3, 1, 7]),
        ("Net 90", [-14, -7, 1, 7]),
    ])
    def test_offsets_by_family(self, label, offsets):
        """Test the offsets of every family"""
        schedule = smart_schedule(PaymentTerms(enabled=True, terms=label))
        assert [entry.offset_days for entry in schedule] == offsets
    
    def test_kinds_are_positional(self):
        """Test kinds follow friendly, polite, firm, urgent"""
        schedule = smart_schedule(PaymentTerms(enabled=True, terms="Net 15"))
        assert [entry.kind for entry in schedule] == [
            ReminderKind.FRIENDLY, ReminderKind.POLITE, ReminderKind.FIRM, ReminderKind.URGENT
        ]
    
    def test_disabled_or_missing_terms_use_default(self):
        """Test that disabled terms fall back to Net 30"""
        disabled = smart_schedule(PaymentTerms(enabled=False, terms="Due on Receipt"))
        missing = smart_schedule(None)
        assert [e.offset_days for e in disabled] == [-14, -7, 1, 7]
        assert [e.offset_days for e in missing] == [-14, -7, 1, 7]
    
    def test_default_option_alias(self):
        """Test that default_option stands in for an empty terms label"""
        terms = PaymentTerms(enabled=True, terms="", default_option="Net 15")
        assert effective_term_label(terms) == "Net 15"
        assert [e.offset_days for e in smart_schedule(terms)] == [-7, -3, 1, 7]


class TestDueOnReceipt:
    """Test Due on Receipt detection"""
    
    def test_terms_label(self):
        assert is_due_on_receipt(PaymentTerms(enabled=True, terms="Due on Receipt"))
    
    def test_default_option_alias(self):
        """Test detection through the default_option alias"""
        assert is_due_on_receipt(PaymentTerms(enabled=True, terms="Custom", default_option="Due on Receipt"))
    
    def test_disabled_terms(self):
        assert not is_due_on_receipt(PaymentTerms(enabled=False, terms="Due on Receipt"))
        assert not is_due_on_receipt(None)
    
    def test_describe_terms(self):
        assert describe_terms(PaymentTerms(enabled=True, terms="Net 30")) == "Net 30"
        assert describe_terms(PaymentTerms(enabled=False, terms="Net 30")) is None
