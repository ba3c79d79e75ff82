"""
PeriodAggregator: revenue, collections, returns and dues by reporting window.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from revenue_kernel.domain.period import ReportingPeriod
from revenue_kernel.selectors.period_aggregator import PeriodAggregator

from tests.builders import make_payment, make_return, make_sale

JANUARY = ReportingPeriod(date(2024, 1, 1), date(2024, 1, 31))


def _at(month, day, hour=12):
    return datetime(2024, month, day, hour, 0, tzinfo=timezone.utc)


@pytest.fixture
def report(session_factory, clock):
    def _report(period=JANUARY):
        with session_factory() as session:
            return PeriodAggregator(session, clock).summarize(period)

    return _report


@pytest.fixture
def busy_month(engine, clock):
    """
    Jan 1: C-1 buys 100 (40 cash at the till), C-2 buys 80 on credit (4 units),
           a walk-in buys 50 (online).
    Jan 2: C-1 pays 30 cash, C-2 pays 100 online (20 becomes advance).
    Jan 3: C-2 gets 20 cash back for one unit, C-1 gets 10 credited.
    """
    clock.set_time(_at(1, 1))
    a = engine.record_sale(make_sale("100.00", paid="40.00", mode="cash"))
    b = engine.record_sale(make_sale("80.00", customer_id="C-2", quantity="4"))
    engine.record_sale(make_sale("50.00", customer_id=None, paid="50.00", mode="online"))

    clock.set_time(_at(1, 2))
    engine.record_payment(make_payment("30.00", invoice_id=a.invoice.id))
    engine.record_payment(
        make_payment("100.00", customer_id="C-2", invoice_id=b.invoice.id, mode="online")
    )

    clock.set_time(_at(1, 3))
    engine.record_return(make_return(b.invoice.id, "20.00", refund_mode="cash_refund"))
    engine.record_return(make_return(a.invoice.id, "10.00"))
    return a, b


class TestSummary:
    def test_sales_and_collections(self, busy_month, report):
        summary = report().summary

        assert summary.gross_revenue == Decimal("230.00")
        assert summary.returns == Decimal("30.00")
        assert summary.net_revenue == Decimal("200.00")
        assert summary.invoice_count == 3
        assert summary.instant_collection == Decimal("90.00")
        assert summary.dues_collected == Decimal("130.00")
        assert summary.total_collected == Decimal("220.00")
        assert summary.collection_rate == Decimal("95.65")
        assert summary.cash_refunds == Decimal("20.00")
        assert summary.net_collected == Decimal("200.00")

    def test_net_is_gross_minus_returns(self, busy_month, report):
        summary = report().summary
        assert summary.net_revenue == summary.gross_revenue - summary.returns

    def test_breakdown(self, busy_month, report):
        breakdown = report().comprehensive_breakdown

        assert breakdown.sales.credit_sales == Decimal("140.00")
        assert breakdown.sales.walk_in_sales == Decimal("50.00")
        assert breakdown.collection.from_period_sales == Decimal("110.00")
        assert breakdown.collection.from_prior_sales == Decimal("0")
        assert breakdown.collection.advances == Decimal("20.00")
        collection = breakdown.collection
        assert (
            collection.from_period_sales + collection.from_prior_sales + collection.advances
            == collection.dues_collected
        )
        assert breakdown.returns.return_count == 2
        assert breakdown.returns.credit_adjustments == Decimal("10.00")
        assert breakdown.returns.due_reductions == Decimal("10.00")

    def test_by_mode_maps(self, busy_month, report):
        result = report()

        assert result.payments_by_mode == {
            "cash": Decimal("70.00"),
            "online": Decimal("150.00"),
        }
        assert result.refunds_by_mode == {
            "cash_refund": Decimal("20.00"),
            "credit_adjustment": Decimal("10.00"),
        }
        assert result.due_reductions_by_mode == {
            "cash": Decimal("30.00"),
            "credit_adjustment": Decimal("10.00"),
            "online": Decimal("80.00"),
        }

    def test_dues(self, busy_month, report):
        dues = report().dues_summary

        assert dues.period_based.credit_sales == Decimal("140.00")
        assert dues.period_based.dues_collected == Decimal("130.00")
        assert dues.period_based.still_outstanding == Decimal("10.00")
        assert dues.period_based.invoices_with_due == 2
        assert dues.period_based.net_receivables == Decimal("0")
        assert not dues.period_based.is_advance

        assert dues.all_time.total_due == Decimal("20.00")
        assert dues.all_time.customers_with_due == 1
        assert dues.all_time.total_credit_balance == Decimal("20.00")
        assert dues.all_time.customers_with_credit == 1
        assert dues.all_time.net_receivables == Decimal("0")

    def test_revenue_by_date(self, busy_month, report):
        days = report().revenue_by_date

        assert len(days) == 31
        jan1, jan2, jan3 = days[:3]
        assert (jan1.date, jan1.gross_revenue, jan1.invoice_count) == (
            date(2024, 1, 1),
            Decimal("230.00"),
            3,
        )
        assert jan1.collected == Decimal("90.00")
        assert jan2.collected == Decimal("130.00")
        assert jan3.net_revenue == Decimal("-30.00")
        assert sum((d.gross_revenue for d in days), Decimal("0")) == Decimal("230.00")

    def test_empty_window(self, report):
        result = report()
        assert result.summary.gross_revenue == Decimal("0")
        assert result.summary.collection_rate == Decimal("0")
        assert result.summary.average_order_value == Decimal("0")
        assert result.payments_by_mode == {}


class TestPeriodBoundaries:
    def test_credit_sale_and_later_payment_in_different_windows(self, engine, clock, report):
        clock.set_time(_at(1, 1))
        sale = engine.record_sale(make_sale("200.00"))
        clock.set_time(_at(2, 4))
        engine.record_payment(make_payment("200.00", invoice_id=sale.invoice.id))

        first = report(ReportingPeriod(date(2024, 1, 1), date(2024, 1, 30))).dues_summary
        second = report(ReportingPeriod(date(2024, 1, 31), date(2024, 2, 9))).dues_summary

        assert first.period_based.credit_sales == Decimal("200.00")
        assert first.period_based.dues_collected == Decimal("0")
        assert first.period_based.still_outstanding == Decimal("200.00")

        assert second.period_based.credit_sales == Decimal("0")
        assert second.period_based.dues_collected == Decimal("200.00")
        assert second.period_based.still_outstanding == Decimal("-200.00")
        assert second.period_based.is_advance

        assert (
            first.period_based.still_outstanding + second.period_based.still_outstanding
            == Decimal("0")
        )

    def test_prior_sales_collection(self, engine, clock, report):
        clock.set_time(_at(1, 20))
        sale = engine.record_sale(make_sale("60.00"))
        clock.set_time(_at(2, 2))
        engine.record_payment(make_payment("60.00", invoice_id=sale.invoice.id))

        collection = report(
            ReportingPeriod(date(2024, 2, 1), date(2024, 2, 29))
        ).comprehensive_breakdown.collection
        assert collection.from_prior_sales == Decimal("60.00")
        assert collection.from_period_sales == Decimal("0")

    def test_window_uses_reporting_timezone(self, engine, clock, report):
        # 23:30 UTC on Jan 31 is already Feb 1 in Kolkata
        clock.set_time(datetime(2024, 1, 31, 23, 30, tzinfo=timezone.utc))
        engine.record_sale(make_sale("10.00"))

        utc = report(ReportingPeriod(date(2024, 1, 31), date(2024, 1, 31)))
        kolkata = report(ReportingPeriod(date(2024, 2, 1), date(2024, 2, 1), "Asia/Kolkata"))
        assert utc.summary.invoice_count == 1
        assert kolkata.summary.invoice_count == 1
        assert kolkata.revenue_by_date[0].date == date(2024, 2, 1)


class TestExclusions:
    def test_void_invoices_are_not_revenue(self, engine, report):
        engine.record_sale(make_sale("100.00"))
        doomed = engine.record_sale(make_sale("40.00"))
        engine.void_invoice(doomed.invoice.id, "wrong customer", "void-1")

        result = report()
        assert result.summary.gross_revenue == Decimal("100.00")
        assert result.comprehensive_breakdown.sales.voided_invoices == 1
        assert result.comprehensive_breakdown.sales.voided_value == Decimal("40.00")
        assert result.dues_summary.period_based.credit_sales == Decimal("100.00")

    def test_returns_on_void_invoices_are_not_counted(self, engine, report):
        sale = engine.record_sale(make_sale("100.00"))
        engine.record_return(make_return(sale.invoice.id, "30.00", refund_mode="cash_refund"))
        engine.void_invoice(sale.invoice.id, "entered twice", "void-1")

        result = report()
        assert result.summary.gross_revenue == Decimal("0.00")
        assert result.summary.returns == Decimal("0.00")
        assert result.summary.net_revenue == Decimal("0.00")
        assert result.comprehensive_breakdown.returns.return_count == 0
        assert result.refunds_by_mode == {}
        assert result.revenue_by_date[0].net_revenue == Decimal("0.00")
        assert result.revenue_by_product == ()

    def test_credit_clearance_is_not_a_collection(self, engine, clock, report):
        first = engine.record_sale(make_sale("100.00"))
        engine.record_payment(make_payment("130.00", invoice_id=first.invoice.id))
        clock.advance(days=1)
        second = engine.record_sale(make_sale("50.00"))
        engine.record_payment(
            make_payment("30.00", mode="credit-clearance", invoice_id=second.invoice.id)
        )

        result = report()
        assert result.summary.dues_collected == Decimal("130.00")
        assert result.comprehensive_breakdown.collection.credit_clearances == Decimal("30.00")
        assert "credit-clearance" not in result.payments_by_mode
        assert result.due_reductions_by_mode["credit-clearance"] == Decimal("30.00")


class TestProductBreakdown:
    def test_sales_and_returns_per_product(self, engine, report):
        engine.record_sale(make_sale("100.00", product_id="SKU-A", quantity="2"))
        b = engine.record_sale(make_sale("60.00", product_id="SKU-B", quantity="3"))
        engine.record_sale(make_sale("30.00", customer_id="C-2", product_id="SKU-A"))
        doomed = engine.record_sale(make_sale("15.00", product_id="SKU-C"))
        engine.void_invoice(doomed.invoice.id, "wrong item", "void-1")
        engine.record_return(
            make_return(b.invoice.id, "20.00", product_id="SKU-B", refund_mode="cash_refund")
        )

        result = report()
        a_row, b_row = result.revenue_by_product

        assert a_row.product_id == "SKU-A"
        assert a_row.quantity_sold == Decimal("3")
        assert a_row.gross_revenue == Decimal("130.00")
        assert a_row.returns == Decimal("0.00")
        assert b_row.product_id == "SKU-B"
        assert b_row.quantity_sold == Decimal("3")
        assert b_row.quantity_returned == Decimal("1")
        assert b_row.returns == Decimal("20.00")
        assert b_row.net_revenue == Decimal("40.00")

    def test_products_add_up_to_the_summary(self, busy_month, report):
        result = report()
        products = result.revenue_by_product

        assert sum((p.gross_revenue for p in products), Decimal("0")) == result.summary.gross_revenue
        assert sum((p.returns for p in products), Decimal("0")) == result.summary.returns
        assert sum((p.net_revenue for p in products), Decimal("0")) == result.summary.net_revenue


class TestComparison:
    def test_growth_against_previous_window(self, session_factory, engine, clock):
        clock.set_time(_at(1, 5))
        engine.record_sale(make_sale("100.00", paid="100.00"))
        clock.set_time(_at(1, 15))
        engine.record_sale(make_sale("150.00", paid="150.00"))

        with session_factory() as session:
            comparison = PeriodAggregator(session, clock).compare(
                ReportingPeriod(date(2024, 1, 11), date(2024, 1, 20))
            )

        assert comparison.previous_period.start_date == date(2024, 1, 1)
        assert comparison.previous_period.end_date == date(2024, 1, 10)
        assert comparison.gross_revenue.change == Decimal("50.00")
        assert comparison.gross_revenue.growth_percent == Decimal("50.00")
        assert comparison.invoice_count.growth_percent == Decimal("0")

    def test_growth_is_undefined_after_an_empty_window(self, session_factory, engine):
        engine.record_sale(make_sale("100.00"))
        with session_factory() as session:
            comparison = PeriodAggregator(session).compare(JANUARY)
        assert comparison.gross_revenue.previous == Decimal("0")
        assert comparison.gross_revenue.growth_percent is None


class TestRendering:
    def test_to_dict_shape(self, busy_month, report):
        payload = report().to_dict()

        assert set(payload) >= {
            "period",
            "summary",
            "comprehensiveBreakdown",
            "duesSummary",
            "paymentsByMode",
            "refundsByMode",
            "dueReductionsByMode",
            "revenueByDate",
            "revenueByProduct",
        }
        assert payload["period"]["startDate"] == "2024-01-01"
        assert payload["summary"]["grossRevenue"] == "230.00"
        assert payload["duesSummary"]["periodBased"]["stillOutstanding"] == "10.00"
        assert "allTime" in payload["duesSummary"]
        assert payload["comprehensiveBreakdown"]["collection"]["fromPriorSales"] == "0.00"
        assert payload["revenueByDate"][0]["date"] == "2024-01-01"
        assert payload["revenueByProduct"][0]["productId"] == "SKU-1"
        assert payload["revenueByProduct"][0]["netRevenue"] == "200.00"

    def test_report_is_logged(self, busy_month, report, captured_logs):
        report()
        generated = [r for r in captured_logs() if r["message"] == "revenue_report_generated"]
        assert generated[0]["gross_revenue"] == "230.00"
