"""
Sale pricing and request normalization.

Pure functions; no database.
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from revenue_kernel.domain.dtos import (
    InitialPaymentDraft,
    InvoiceDraft,
    InvoiceLineDraft,
    PaymentDraft,
    ReturnDraft,
    ReturnLineDraft,
)
from revenue_kernel.domain.modes import (
    InvoiceStatus,
    PaymentMode,
    RefundMode,
    parse_payment_mode,
    parse_refund_mode,
    status_for_due,
)
from revenue_kernel.domain.pricing import normalize_payment, normalize_return, price_invoice
from revenue_kernel.exceptions import UnknownModeError, ValidationError


def _draft(*lines, customer_id="C-1", payments=(), subtotal=None, key="sale-1"):
    return InvoiceDraft(
        idempotency_key=key,
        customer_id=customer_id,
        lines=tuple(lines),
        initial_payments=tuple(payments),
        subtotal=subtotal,
    )


class TestPriceInvoice:
    def test_totals_are_sums_of_rounded_lines(self):
        priced = price_invoice(
            _draft(
                InvoiceLineDraft("A", Decimal("3"), Decimal("1.115"), Decimal("0.10")),
                InvoiceLineDraft("B", Decimal("2"), Decimal("10.00")),
            )
        )
        # 3 x 1.115 = 3.345 -> 3.35; tax 0.335 -> 0.34
        assert priced.lines[0].line_subtotal == Decimal("3.35")
        assert priced.lines[0].line_tax == Decimal("0.34")
        assert priced.subtotal == Decimal("23.35")
        assert priced.tax == Decimal("0.34")
        assert priced.total == Decimal("23.69")
        assert priced.initial_due == Decimal("23.69")

    def test_initial_payments_reduce_initial_due(self):
        priced = price_invoice(
            _draft(
                InvoiceLineDraft("A", Decimal("1"), Decimal("100.00")),
                payments=[
                    InitialPaymentDraft("cash", Decimal("30")),
                    InitialPaymentDraft(PaymentMode.CARD, Decimal("20.00")),
                ],
            )
        )
        assert priced.initial_due == Decimal("50.00")
        assert priced.initial_payments == (
            (PaymentMode.CASH, Decimal("30.00")),
            (PaymentMode.CARD, Decimal("20.00")),
        )

    def test_declared_subtotal_within_tolerance_is_accepted(self):
        priced = price_invoice(
            _draft(InvoiceLineDraft("A", Decimal("1"), Decimal("10.00")), subtotal=Decimal("10.01"))
        )
        assert priced.subtotal == Decimal("10.00")

    def test_declared_subtotal_mismatch_is_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            price_invoice(
                _draft(InvoiceLineDraft("A", Decimal("1"), Decimal("10.00")), subtotal=Decimal("10.50"))
            )
        assert exc_info.value.field == "subtotal"

    @pytest.mark.parametrize(
        "line",
        [
            InvoiceLineDraft("A", Decimal("0"), Decimal("1.00")),
            InvoiceLineDraft("A", Decimal("-1"), Decimal("1.00")),
            InvoiceLineDraft("A", Decimal("1"), Decimal("-1.00")),
            InvoiceLineDraft("A", Decimal("1"), Decimal("1.00"), Decimal("-0.05")),
            InvoiceLineDraft("", Decimal("1"), Decimal("1.00")),
        ],
    )
    def test_invalid_lines_are_rejected(self, line):
        with pytest.raises(ValidationError):
            price_invoice(_draft(line))

    def test_float_amounts_are_rejected(self):
        with pytest.raises(ValidationError):
            price_invoice(_draft(InvoiceLineDraft("A", Decimal("1"), 9.99)))

    def test_invoice_without_lines_is_rejected(self):
        with pytest.raises(ValidationError):
            price_invoice(_draft())

    def test_payments_above_total_are_rejected(self):
        with pytest.raises(ValidationError):
            price_invoice(
                _draft(
                    InvoiceLineDraft("A", Decimal("1"), Decimal("10.00")),
                    payments=[InitialPaymentDraft("cash", Decimal("10.01"))],
                )
            )

    def test_credit_clearance_is_not_an_initial_payment(self):
        with pytest.raises(ValidationError):
            price_invoice(
                _draft(
                    InvoiceLineDraft("A", Decimal("1"), Decimal("10.00")),
                    payments=[InitialPaymentDraft("credit-clearance", Decimal("5"))],
                )
            )

    def test_zero_initial_payment_is_rejected(self):
        with pytest.raises(ValidationError):
            price_invoice(
                _draft(
                    InvoiceLineDraft("A", Decimal("1"), Decimal("10.00")),
                    payments=[InitialPaymentDraft("cash", Decimal("0"))],
                )
            )

    def test_walk_in_sale_must_be_fully_paid(self):
        line = InvoiceLineDraft("A", Decimal("1"), Decimal("10.00"))
        with pytest.raises(ValidationError) as exc_info:
            price_invoice(
                _draft(line, customer_id=None, payments=[InitialPaymentDraft("cash", Decimal("5"))])
            )
        assert exc_info.value.field == "customer_id"

        priced = price_invoice(
            _draft(line, customer_id=None, payments=[InitialPaymentDraft("online", Decimal("10"))])
        )
        assert priced.initial_due == Decimal("0")
        assert priced.customer_id is None

    def test_missing_idempotency_key_is_rejected(self):
        with pytest.raises(ValidationError):
            price_invoice(_draft(InvoiceLineDraft("A", Decimal("1"), Decimal("1")), key="  "))

    def test_fingerprint_ignores_amount_spelling(self):
        a = price_invoice(
            _draft(
                InvoiceLineDraft("A", Decimal("1"), Decimal("10")),
                payments=[InitialPaymentDraft("cash", Decimal("4"))],
            )
        )
        b = price_invoice(
            _draft(
                InvoiceLineDraft("A", Decimal("1.0"), Decimal("10.00")),
                payments=[InitialPaymentDraft("CASH", Decimal("4.00"))],
            )
        )
        assert a.fingerprint == b.fingerprint

    def test_fingerprint_changes_with_payload(self):
        a = price_invoice(_draft(InvoiceLineDraft("A", Decimal("1"), Decimal("10"))))
        b = price_invoice(_draft(InvoiceLineDraft("A", Decimal("1"), Decimal("11"))))
        assert a.fingerprint != b.fingerprint

    def test_naive_created_at_is_rejected(self):
        draft = _draft(InvoiceLineDraft("A", Decimal("1"), Decimal("10")))
        with pytest.raises(ValidationError) as exc_info:
            price_invoice(replace(draft, created_at=datetime(2024, 1, 2, 9, 0)))
        assert exc_info.value.field == "created_at"

        aware = datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)
        assert price_invoice(replace(draft, created_at=aware)).total == Decimal("10.00")


class TestNormalizePayment:
    def test_amount_is_rounded_and_mode_parsed(self):
        normalized = normalize_payment(
            PaymentDraft("pay-1", "C-1", Decimal("10.005"), mode="Online")
        )
        assert normalized.amount == Decimal("10.01")
        assert normalized.mode is PaymentMode.ONLINE

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), Decimal("0.004")])
    def test_non_positive_amount_is_rejected(self, amount):
        with pytest.raises(ValidationError):
            normalize_payment(PaymentDraft("pay-1", "C-1", amount))

    def test_unknown_mode_is_rejected(self):
        with pytest.raises(UnknownModeError) as exc_info:
            normalize_payment(PaymentDraft("pay-1", "C-1", Decimal("5"), mode="cheque"))
        assert exc_info.value.code == "UNKNOWN_MODE"

    def test_actor_does_not_change_fingerprint(self):
        a = normalize_payment(PaymentDraft("pay-1", "C-1", Decimal("5"), actor_id="till-1"))
        b = normalize_payment(PaymentDraft("pay-1", "C-1", Decimal("5.00"), actor_id="till-2"))
        assert a.fingerprint == b.fingerprint

    def test_naive_recorded_at_is_rejected(self):
        draft = PaymentDraft("pay-1", "C-1", Decimal("5"), recorded_at=datetime(2024, 1, 2))
        with pytest.raises(ValidationError) as exc_info:
            normalize_payment(draft)
        assert exc_info.value.field == "recorded_at"


class TestNormalizeReturn:
    def test_return_value_is_sum_of_lines(self):
        normalized = normalize_return(
            ReturnDraft(
                "ret-1",
                uuid4(),
                (
                    ReturnLineDraft("A", Decimal("2"), Decimal("5.00")),
                    ReturnLineDraft("B", Decimal("1"), Decimal("2.50")),
                ),
                refund_mode="cash-refund",
            )
        )
        assert normalized.return_value == Decimal("12.50")
        assert normalized.refund_mode is RefundMode.CASH_REFUND

    def test_zero_value_return_is_rejected(self):
        with pytest.raises(ValidationError):
            normalize_return(
                ReturnDraft(
                    "ret-1",
                    uuid4(),
                    (ReturnLineDraft("A", Decimal("1"), Decimal("0")),),
                    refund_mode="cash_refund",
                )
            )

    def test_unknown_refund_mode_is_rejected(self):
        with pytest.raises(UnknownModeError):
            normalize_return(
                ReturnDraft(
                    "ret-1",
                    uuid4(),
                    (ReturnLineDraft("A", Decimal("1"), Decimal("1")),),
                    refund_mode="store_credit",
                )
            )

    def test_naive_recorded_at_is_rejected(self):
        draft = ReturnDraft(
            "ret-1",
            uuid4(),
            (ReturnLineDraft("A", Decimal("1"), Decimal("1")),),
            refund_mode="cash_refund",
            recorded_at=datetime(2024, 1, 2),
        )
        with pytest.raises(ValidationError) as exc_info:
            normalize_return(draft)
        assert exc_info.value.field == "recorded_at"


class TestModes:
    def test_credit_clearance_spellings(self):
        assert parse_payment_mode("credit_clearance") is PaymentMode.CREDIT_CLEARANCE
        assert parse_payment_mode(" Credit-Clearance ") is PaymentMode.CREDIT_CLEARANCE
        assert not PaymentMode.CREDIT_CLEARANCE.moves_money
        assert PaymentMode.CASH.moves_money

    def test_refund_mode_parsing(self):
        assert parse_refund_mode("credit-adjustment") is RefundMode.CREDIT_ADJUSTMENT
        with pytest.raises(UnknownModeError):
            parse_refund_mode("voucher")

    @pytest.mark.parametrize(
        "due,total,expected",
        [
            ("100.00", "100.00", InvoiceStatus.OPEN),
            ("40.00", "100.00", InvoiceStatus.PARTIALLY_PAID),
            ("0", "100.00", InvoiceStatus.PAID),
            ("0", "0", InvoiceStatus.PAID),
        ],
    )
    def test_status_for_due(self, due, total, expected):
        assert status_for_due(Decimal(due), Decimal(total)) is expected
