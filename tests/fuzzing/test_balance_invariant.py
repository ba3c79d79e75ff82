"""
Property test: random operation sequences never break the balance invariant.

For every customer, after any mix of sales, payments, returns, voids and
credit clearances (valid or not), the recorded balance equals the open dues
of their non-void invoices minus their advance credit, the statement's deltas
sum to that balance, and no invoice due is negative.
"""

from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from revenue_kernel.db.engine import build_engine, create_tables
from revenue_kernel.domain.clock import DeterministicClock
from revenue_kernel.models.invoice import Invoice
from revenue_kernel.selectors.customer_selector import CustomerSelector
from revenue_kernel.services.reconciliation_engine import (
    ReconciliationEngine,
    ReconciliationSettings,
)

from tests.builders import make_payment, make_return, make_sale

CUSTOMERS = ("C-1", "C-2", "C-3")

cents = st.integers(min_value=1, max_value=50_000).map(lambda c: Decimal(c) / 100)
customer = st.sampled_from(CUSTOMERS)
invoice_ref = st.integers(min_value=0, max_value=20)

sale_op = st.tuples(
    st.just("sale"), customer, cents, st.sampled_from([None, "0.25", "0.5", "1"])
)
payment_op = st.tuples(
    st.just("pay"),
    customer,
    cents,
    st.one_of(st.none(), invoice_ref),
    st.sampled_from(["cash", "online", "card"]),
)
return_op = st.tuples(
    st.just("return"),
    invoice_ref,
    cents,
    st.sampled_from(["credit_adjustment", "cash_refund"]),
)
void_op = st.tuples(st.just("void"), invoice_ref)
clear_op = st.tuples(st.just("clear"), customer, cents, st.one_of(st.none(), invoice_ref))

operations = st.lists(
    st.one_of(sale_op, sale_op, payment_op, payment_op, return_op, void_op, clear_op),
    min_size=1,
    max_size=40,
)


def _apply(engine, clock, invoices, op):
    kind = op[0]
    clock.advance(minutes=5)

    def pick(ref):
        return invoices[ref % len(invoices)] if invoices else None

    if kind == "sale":
        _, customer_id, total, paid_share = op
        paid = None if paid_share is None else (total * Decimal(paid_share)).quantize(Decimal("0.01"))
        result = engine.record_sale(make_sale(total, customer_id=customer_id, paid=paid, quantity="2"))
        if result.invoice is not None:
            invoices.append(result.invoice.id)
    elif kind == "pay":
        _, customer_id, amount, ref, mode = op
        target = pick(ref) if ref is not None else None
        engine.record_payment(make_payment(amount, customer_id=customer_id, invoice_id=target, mode=mode))
    elif kind == "return" and invoices:
        _, ref, value, refund_mode = op
        engine.record_return(make_return(pick(ref), value, refund_mode=refund_mode))
    elif kind == "void" and invoices:
        engine.void_invoice(pick(op[1]), "fuzz", f"void-{len(invoices)}-{op[1]}")
    elif kind == "clear":
        _, customer_id, amount, ref = op
        target = pick(ref) if ref is not None else None
        engine.record_payment(
            make_payment(amount, customer_id=customer_id, invoice_id=target, mode="credit-clearance")
        )


@settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(ops=operations)
def test_balance_invariant_holds_for_any_sequence(ops):
    db = build_engine("sqlite://")
    create_tables(db)
    factory = sessionmaker(bind=db, expire_on_commit=False)
    clock = DeterministicClock()
    engine = ReconciliationEngine(
        factory, clock=clock, settings=ReconciliationSettings(retry_backoff_seconds=0)
    )
    invoices = []
    try:
        for op in ops:
            _apply(engine, clock, invoices, op)

        with factory() as session:
            selector = CustomerSelector(session)
            assert selector.audit_balances() == []

            for balance in selector.list_balances():
                assert balance.advance_credit >= 0
                moves = selector.statement(balance.customer_id)
                assert sum((m.delta for m in moves), Decimal("0")) == balance.amount_due

            dues = session.scalars(select(Invoice.due_amount)).all()
            assert all(due >= 0 for due in dues)
    finally:
        db.dispose()
