"""
LedgerStore: invoice, payment and return records.  Flush-only.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from revenue_kernel.domain.clock import DeterministicClock
from revenue_kernel.domain.modes import InvoiceStatus, PaymentMode
from revenue_kernel.domain.period import ReportingPeriod
from revenue_kernel.domain.pricing import NormalizedReturnLine, price_invoice
from revenue_kernel.exceptions import InvoiceNotFoundError, ValidationError
from revenue_kernel.selectors.ledger_selector import LedgerFilter
from revenue_kernel.services.balance_tracker import BalanceTracker
from revenue_kernel.services.ledger_store import LedgerStore

from tests.builders import make_sale

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(session):
    BalanceTracker(session, DeterministicClock(T0)).open_account("C-1")
    BalanceTracker(session, DeterministicClock(T0)).open_account("C-2")
    return LedgerStore(session, DeterministicClock(T0))


def _create(store, total="100.00", *, days=0, **kwargs):
    priced = price_invoice(make_sale(total, created_at=T0 + timedelta(days=days), **kwargs))
    return store.create_invoice(priced)


def _pay(store, amount, invoice_id=None, customer_id="C-1", mode=PaymentMode.CASH):
    return store.append_payment(
        customer_id=customer_id,
        amount=Decimal(amount),
        mode=mode,
        idempotency_key=f"pay-{uuid4()}",
        fingerprint="f",
        invoice_id=invoice_id,
    )


class TestInvoices:
    def test_create_invoice_persists_lines_and_payments(self, store):
        invoice = _create(store, "100.00", paid="40.00", mode="card")
        assert invoice.initial_due == Decimal("60.00")
        assert invoice.due_amount == Decimal("60.00")
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID.value
        assert len(invoice.lines) == 1
        assert invoice.instant_collection == Decimal("40.00")
        assert store.find_invoice_by_key(invoice.idempotency_key).id == invoice.id

    def test_created_at_defaults_to_clock(self, store):
        invoice = store.create_invoice(price_invoice(make_sale("5.00")))
        assert invoice.created_at == T0

    def test_require_open_invoice(self, store):
        with pytest.raises(InvoiceNotFoundError):
            store.require_open_invoice(uuid4())

        invoice = _create(store)
        store.mark_void(invoice, reason="typo", idempotency_key="void-1", fingerprint="f")
        with pytest.raises(InvoiceNotFoundError) as exc_info:
            store.require_open_invoice(invoice.id)
        assert exc_info.value.is_void
        assert store.find_void_by_key("void-1").id == invoice.id

    def test_reduce_due_updates_status(self, store):
        invoice = _create(store, "100.00")
        store.reduce_due(invoice, Decimal("30.00"))
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID.value
        store.reduce_due(invoice, Decimal("70.00"))
        assert invoice.due_amount == Decimal("0")
        assert invoice.status == InvoiceStatus.PAID.value

    def test_reduce_due_never_below_zero(self, store):
        invoice = _create(store, "10.00")
        with pytest.raises(ValidationError):
            store.reduce_due(invoice, Decimal("10.01"))
        with pytest.raises(ValidationError):
            store.reduce_due(invoice, Decimal("-1"))

    def test_open_invoices_for_customer(self, store):
        newer = _create(store, "20.00", days=2)
        older = _create(store, "10.00", days=1)
        _create(store, "30.00", paid="30.00")
        _create(store, "40.00", customer_id="C-2")
        voided = _create(store, "50.00", days=3)
        store.mark_void(voided, reason="x", idempotency_key="v", fingerprint="f")

        open_ids = [inv.id for inv in store.open_invoices_for_customer("C-1")]
        assert open_ids == [older.id, newer.id]
        assert [inv.id for inv in store.open_invoices_for_customer("C-1", exclude=[older.id])] == [
            newer.id
        ]


class TestPayments:
    def test_append_payment_and_application(self, store):
        invoice = _create(store, "100.00")
        payment = _pay(store, "60.00", invoice_id=invoice.id)
        store.record_application(payment, invoice.id, Decimal("60.00"), 0)

        assert payment.recorded_at == T0
        assert [a.amount for a in payment.applications] == [Decimal("60.00")]
        assert store.find_payment_by_key(payment.idempotency_key).id == payment.id

    def test_payment_amount_must_be_positive(self, store):
        with pytest.raises(ValidationError):
            _pay(store, "0")

    def test_payment_to_missing_or_void_invoice(self, store):
        with pytest.raises(InvoiceNotFoundError):
            _pay(store, "10.00", invoice_id=uuid4())
        invoice = _create(store)
        store.mark_void(invoice, reason="x", idempotency_key="v", fingerprint="f")
        with pytest.raises(InvoiceNotFoundError):
            _pay(store, "10.00", invoice_id=invoice.id)


class TestReturns:
    def _return(self, store, invoice, value, quantity="1", product_id="SKU-1"):
        value = Decimal(value)
        quantity = Decimal(quantity)
        return store.append_return(
            invoice,
            lines=[NormalizedReturnLine(product_id, quantity, value / quantity, value)],
            return_value=value,
            refund_mode="cash_refund",
            idempotency_key=f"ret-{uuid4()}",
            fingerprint="f",
        )

    def test_returned_totals(self, store):
        invoice = _create(store, "100.00", quantity="4")
        self._return(store, invoice, "25.00", quantity="1")
        self._return(store, invoice, "50.00", quantity="2")

        assert store.returned_value(invoice.id) == Decimal("75.00")
        assert store.returned_quantities(invoice.id) == {"SKU-1": Decimal("3")}
        assert store.sold_quantities(invoice) == {"SKU-1": Decimal("4")}

    def test_return_value_must_be_positive(self, store):
        invoice = _create(store)
        with pytest.raises(ValidationError):
            self._return(store, invoice, "0")

    def test_return_on_void_invoice(self, store):
        invoice = _create(store)
        store.mark_void(invoice, reason="x", idempotency_key="v", fingerprint="f")
        with pytest.raises(InvoiceNotFoundError):
            self._return(store, invoice, "10.00")


class TestQueries:
    def test_query_by_period_and_filter(self, store):
        in_window = _create(store, "10.00", days=0)
        _create(store, "20.00", days=40)
        walk_in = _create(store, "5.00", customer_id=None, paid="5.00")
        other = _create(store, "7.00", customer_id="C-2")
        _pay(store, "3.00", invoice_id=in_window.id)
        _pay(store, "4.00", customer_id="C-2", mode=PaymentMode.ONLINE)

        period = ReportingPeriod(date(2024, 1, 1), date(2024, 1, 31))
        ids = {inv.id for inv in store.query_invoices(period)}
        assert ids == {in_window.id, walk_in.id, other.id}

        walk_ins = store.query_invoices(period, LedgerFilter(walk_in_only=True))
        assert [inv.id for inv in walk_ins] == [walk_in.id]
        assert walk_ins[0].is_walk_in

        online = store.query_payments(period, LedgerFilter(modes=("online",)))
        assert [p.amount for p in online] == [Decimal("4.00")]
        assert online[0].mode is PaymentMode.ONLINE

        for_invoice = store.query_payments(None, LedgerFilter(invoice_id=in_window.id))
        assert [p.amount for p in for_invoice] == [Decimal("3.00")]

    def test_void_invoices_hidden_unless_requested(self, store):
        invoice = _create(store)
        store.mark_void(invoice, reason="x", idempotency_key="v", fingerprint="f")
        assert store.query_invoices() == []
        assert len(store.query_invoices(filters=LedgerFilter(include_void=True))) == 1
