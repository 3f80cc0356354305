"""
Test suite for late fee module

Tests fee eligibility by status, the grace period boundary, fixed and
percentage fees, partial payments, and display summaries.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date, timedelta

from reminder_engine.currency import Money, Currency
from reminder_engine.models import Invoice, InvoiceStatus, LateFeePolicy, LateFeeType, PaymentTerms
from reminder_engine.late_fees import LateFeeCalculator, LateFeeCharges, describe_policy


TODAY = date(2024, 5, 20)


def make_invoice(days_overdue: int, status: str = "sent", late_fees: LateFeePolicy = None,
                 total: str = "1000.00", **kwargs) -> Invoice:
    return Invoice(
        id="INV-LF",
        status=status,
        due_date=TODAY - timedelta(days=days_overdue),
        total=Decimal(total),
        late_fees=late_fees,
        **kwargs
    )


def fixed_fee(amount: str = "50", grace: int = 7, enabled: bool = True) -> LateFeePolicy:
    return LateFeePolicy(enabled=enabled, fee_type=LateFeeType.FIXED, amount=Decimal(amount), grace_period_days=grace)


class TestLateFeePolicy:
    """Test late fee policy validation"""
    
    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            LateFeePolicy(enabled=True, fee_type=LateFeeType.FIXED, amount=Decimal("-1"))
    
    def test_negative_grace_rejected(self):
        with pytest.raises(ValueError, match="Grace period"):
            LateFeePolicy(enabled=True, fee_type=LateFeeType.FIXED, amount=Decimal("5"), grace_period_days=-2)
    
    def test_from_dict_spellings(self):
        """Test the stored key spellings for grace period and type"""
        policy = LateFeePolicy.from_dict({"enabled": True, "type": "percentage", "amount": 1.5, "gracePeriod": 10})
        assert policy.fee_type == LateFeeType.PERCENTAGE
        assert policy.amount == Decimal("1.5")
        assert policy.grace_period_days == 10


class TestLateFeeCalculator:
    """Test late fee computation"""
    
    def setup_method(self):
        self.calculator = LateFeeCalculator()
    
    def test_fee_after_grace_period(self):
        """Test a fixed fee ten days overdue with a seven day grace period"""
        charges = self.calculator.compute_charges(make_invoice(10, late_fees=fixed_fee()), as_of=TODAY)
        
        assert charges.has_late_fee
        assert charges.chargeable_overdue_days == 3
        assert charges.late_fee_amount == Decimal("50")
        assert charges.total_payable == Decimal("1050.00")
    
    def test_within_grace_period(self):
        """Test that no fee accrues five days into a seven day grace period"""
        charges = self.calculator.compute_charges(make_invoice(5, late_fees=fixed_fee()), as_of=TODAY)
        
        assert not charges.has_late_fee
        assert charges.late_fee_amount == Decimal("0")
        assert charges.total_payable == Decimal("1000.00")
        assert charges.chargeable_overdue_days == 0
    
    def test_grace_boundary_exact(self):
        """Test that being exactly grace_period_days overdue is still free"""
        assert not self.calculator.compute_charges(make_invoice(7, late_fees=fixed_fee()), as_of=TODAY).has_late_fee
        assert self.calculator.compute_charges(make_invoice(8, late_fees=fixed_fee()), as_of=TODAY).has_late_fee
    
    def test_fee_does_not_scale_with_days(self):
        """Test that chargeable days gate the fee rather than multiply it"""
        charges = self.calculator.compute_charges(make_invoice(90, late_fees=fixed_fee()), as_of=TODAY)
        assert charges.late_fee_amount == Decimal("50")
        assert charges.chargeable_overdue_days == 83
    
    def test_percentage_fee_on_total(self):
        """Test percentage fees are computed on the invoice total"""
        policy = LateFeePolicy(enabled=True, fee_type=LateFeeType.PERCENTAGE, amount=Decimal("1.5"), grace_period_days=0)
        charges = self.calculator.compute_charges(
            make_invoice(3, late_fees=policy, total="1234.56", amount_paid=Decimal("200")), as_of=TODAY
        )
        
        assert charges.late_fee_amount == Decimal("18.5184")
        assert charges.total_payable == Decimal("1253.0784")
        assert charges.late_fee_money == Money(Decimal("18.52"), Currency.USD)
        assert charges.total_payable_money.to_string() == "USD 1,253.08"
    
    def test_not_overdue(self):
        """Test invoices due in the future or due today"""
        assert not self.calculator.compute_charges(make_invoice(-5, late_fees=fixed_fee(grace=0)), as_of=TODAY).has_late_fee
        assert not self.calculator.compute_charges(make_invoice(0, late_fees=fixed_fee(grace=0)), as_of=TODAY).has_late_fee
    
    def test_disabled_or_missing_policy(self):
        assert not self.calculator.compute_charges(make_invoice(30, late_fees=fixed_fee(enabled=False)), as_of=TODAY).has_late_fee
        assert not self.calculator.compute_charges(make_invoice(30), as_of=TODAY).has_late_fee
    
    @pytest.mark.parametrize("status", ["draft", "paid"])
    def test_draft_and_paid_never_accrue(self, status):
        """Test that only sent invoices accrue fees"""
        charges = self.calculator.compute_charges(make_invoice(30, status=status, late_fees=fixed_fee(grace=0)), as_of=TODAY)
        
        assert not charges.has_late_fee
        assert charges.total_payable == Decimal("1000.00")
    
    def test_due_on_receipt_send_day_offset(self):
        """Test that Due on Receipt overdue days start the day after sending"""
        invoice = Invoice(
            id="INV-DOR",
            status=InvoiceStatus.SENT,
            due_date=date(2024, 5, 1),
            updated_at=datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc),
            payment_terms=PaymentTerms(enabled=True, terms="Due on Receipt"),
            late_fees=fixed_fee(grace=2),
            total=Decimal("500")
        )
        # Effective overdue date is 2024-05-11; on 05-14 the invoice is 3 days overdue
        charges = self.calculator.compute_charges(invoice, as_of=date(2024, 5, 14))
        assert charges.has_late_fee
        assert charges.chargeable_overdue_days == 1
        
        charges = self.calculator.compute_charges(invoice, as_of=date(2024, 5, 13))
        assert not charges.has_late_fee
    
    def test_partial_payments(self):
        """Test remaining balance after partial payments"""
        charges = self.calculator.compute_charges(
            make_invoice(10, late_fees=fixed_fee(), amount_paid=Decimal("400")), as_of=TODAY
        )
        
        assert charges.total_paid == Decimal("400")
        assert charges.remaining_balance == Decimal("650.00")
        assert charges.is_partially_paid
        assert charges.remaining_balance_money == Money(Decimal("650"), Currency.USD)
    
    def test_no_fee_result_keeps_currency(self):
        invoice = make_invoice(-3, currency=Currency.EUR)
        charges = self.calculator.compute_charges(invoice, as_of=TODAY)
        assert charges.currency == Currency.EUR
        assert charges.total_payable_money.to_symbol_string() == "€1,000.00"


class TestDescribePolicy:
    """Test late fee display summaries"""
    
    def test_fixed(self):
        assert describe_policy(fixed_fee("50", 7)) == "$50 after 7 days"
    
    def test_percentage(self):
        policy = LateFeePolicy(enabled=True, fee_type=LateFeeType.PERCENTAGE, amount=Decimal("1.50"), grace_period_days=10)
        assert describe_policy(policy) == "1.5% after 10 days"
    
    def test_disabled(self):
        assert describe_policy(fixed_fee(enabled=False)) is None
        assert describe_policy(None) is None
