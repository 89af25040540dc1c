# Overview: Pytest coverage for read-only stock analytics.

import pytest
from sqlalchemy import update

from branchstock.errors import InvalidQuantity, InvalidTimestamp
from branchstock.models import Product, StockMovement
from branchstock.services import analytics_service, inventory_service, sales_service


def _sell(branch, product, quantity, occurred_at=None):
    sale, _ = sales_service.record_sale(
        branch_id=branch.id,
        lines=[{"product_id": product.id, "quantity": quantity}],
        occurred_at=occurred_at,
    )
    return sale


class TestAbcClassification:
    def test_pareto_classes(self, db_session, branch_a, make_product):
        high = make_product(branch_a, code="HIGH", stock=20, cost=100)
        mid = make_product(branch_a, code="MID", stock=20, cost=50)
        low = make_product(branch_a, code="LOW", stock=20, cost=10)
        make_product(branch_a, code="IDLE", stock=20, cost=999)

        inventory_service.register_exit(product_id=high.id, quantity=8, reason="Use")
        _sell(branch_a, mid, 3)
        inventory_service.register_exit(product_id=low.id, quantity=5, reason="Use")

        report = analytics_service.abc_classification(branch_id=branch_a.id)

        assert [(r["code"], r["value_cents"], r["abc_class"]) for r in report["rows"]] == [
            ("HIGH", 800, "A"),
            ("MID", 150, "B"),
            ("LOW", 50, "C"),
        ]
        assert report["total_value_cents"] == 1000
        assert report["summary"] == {"A": 1, "B": 1, "C": 1}
        assert report["rows"][1]["cumulative_pct"] == 95.0

    def test_ties_break_by_product_id(self):
        rows = analytics_service.classify_abc({7: 500, 3: 500, 9: 0})
        assert [r["product_id"] for r in rows] == [3, 7]

    def test_ignores_inbound_and_losses(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=20, cost=100)
        inventory_service.register_entry(product_id=product.id, quantity=5)
        inventory_service.register_loss(product_id=product.id, quantity=2, reason="Broken")

        report = analytics_service.abc_classification(branch_id=branch_a.id)

        assert report["rows"] == []

    def test_window_filters(self, db_session, branch_a, make_product, days_ago):
        product = make_product(branch_a, stock=20, cost=100, occurred_at=days_ago(60))
        inventory_service.register_exit(product_id=product.id, quantity=4, reason="Old", occurred_at=days_ago(50))
        inventory_service.register_exit(product_id=product.id, quantity=1, reason="New", occurred_at=days_ago(5))

        report = analytics_service.abc_classification(branch_id=branch_a.id, start=days_ago(10))

        assert report["rows"][0]["value_cents"] == 100

    def test_start_after_end_rejected(self, db_session, days_ago):
        with pytest.raises(InvalidTimestamp):
            analytics_service.abc_classification(start=days_ago(1), end=days_ago(2))


class TestDiscrepancies:
    def test_consistent_system_reports_nothing(self, db_session, branch_a, branch_b, make_product):
        product = make_product(branch_a, stock=10)
        make_product(branch_a, code="EMPTY")
        inventory_service.register_transfer(product_id=product.id, quantity=3, destination_branch_id=branch_b.id)
        sale = _sell(branch_a, product, 2)
        sales_service.cancel_sale(sale_id=sale.id)

        assert analytics_service.detect_discrepancies() == []

    def test_direct_write_is_detected(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=10)
        db_session.execute(update(Product).where(Product.id == product.id).values(current_stock=13))
        db_session.commit()

        rows = analytics_service.detect_discrepancies(branch_id=branch_a.id)

        assert len(rows) == 1
        assert (rows[0]["current_stock"], rows[0]["ledger_stock"], rows[0]["difference"]) == (13, 10, 3)
        assert rows[0]["last_movement_at"] is not None

    def test_stock_without_movements_is_detected(self, db_session, branch_a, make_product):
        product = make_product(branch_a)
        db_session.execute(update(Product).where(Product.id == product.id).values(current_stock=4))
        db_session.commit()

        rows = analytics_service.detect_discrepancies()

        assert [(r["product_id"], r["ledger_stock"], r["last_movement_id"]) for r in rows] == [(product.id, 0, None)]


class TestRotation:
    def test_index_and_classification(self, db_session, branch_a, make_product, days_ago):
        slow = make_product(branch_a, code="SLOW", stock=100, occurred_at=days_ago(40))
        _sell(branch_a, slow, 30, occurred_at=days_ago(10))

        fast = make_product(branch_a, code="FAST", stock=5, occurred_at=days_ago(40))
        _sell(branch_a, fast, 4, occurred_at=days_ago(20))
        inventory_service.register_entry(product_id=fast.id, quantity=3, occurred_at=days_ago(15))
        _sell(branch_a, fast, 4, occurred_at=days_ago(10))

        make_product(branch_a, code="NEVER")

        report = analytics_service.rotation_index(branch_id=branch_a.id, days=30)
        rows = {r["code"]: r for r in report["rows"]}

        assert [r["code"] for r in report["rows"]] == ["FAST", "SLOW", "NEVER"]
        assert rows["FAST"]["sales_quantity"] == 8
        assert (rows["FAST"]["stock_at_start"], rows["FAST"]["stock_at_end"]) == (5, 0)
        assert rows["FAST"]["rotation_index"] == 3.2
        assert rows["FAST"]["classification"] == "HIGH"
        assert rows["SLOW"]["rotation_index"] == pytest.approx(30 / 85, abs=1e-4)
        assert rows["SLOW"]["classification"] == "LOW"
        assert rows["NEVER"]["rotation_index"] is None
        assert rows["NEVER"]["classification"] is None
        assert report["summary"] == {"HIGH": 1, "MEDIUM": 0, "LOW": 1, "UNDEFINED": 1}

    def test_cancelled_sales_do_not_count(self, db_session, branch_a, make_product, days_ago):
        product = make_product(branch_a, stock=10, occurred_at=days_ago(40))
        sale = _sell(branch_a, product, 6, occurred_at=days_ago(5))
        sales_service.cancel_sale(sale_id=sale.id)

        row = analytics_service.rotation_index(branch_id=branch_a.id)["rows"][0]

        assert row["sales_quantity"] == 0
        assert row["rotation_index"] == 0.0
        assert row["classification"] == "LOW"

    def test_classification_is_month_normalized(self, db_session, branch_a, make_product, days_ago):
        product = make_product(branch_a, stock=10, occurred_at=days_ago(20))
        _sell(branch_a, product, 6, occurred_at=days_ago(5))

        row = analytics_service.rotation_index(branch_id=branch_a.id, days=10)["rows"][0]

        # start 10, end 4, index 6/7; scaled x3 to a month
        assert row["rotation_index"] == pytest.approx(6 / 7, abs=1e-4)
        assert row["monthly_rotation_index"] == pytest.approx(18 / 7, abs=1e-4)
        assert row["classification"] == "HIGH"

    def test_invalid_days(self, db_session):
        with pytest.raises(InvalidQuantity):
            analytics_service.rotation_index(days=0)


class TestReorder:
    def test_suggestions_and_priorities(self, db_session, branch_a, make_product, days_ago):
        critical = make_product(branch_a, code="CRIT", stock=100, occurred_at=days_ago(95))
        _sell(branch_a, critical, 95, occurred_at=days_ago(40))

        high = make_product(branch_a, code="HIGH", stock=100, occurred_at=days_ago(95))
        _sell(branch_a, high, 90, occurred_at=days_ago(50))

        plenty = make_product(branch_a, code="PLENTY", stock=200, occurred_at=days_ago(95))
        _sell(branch_a, plenty, 45, occurred_at=days_ago(30))

        make_product(branch_a, code="UNSOLD", stock=1)

        rows = analytics_service.reorder_suggestions(branch_id=branch_a.id, horizon_days=30, lookback_days=90)

        assert [r["code"] for r in rows] == ["CRIT", "HIGH"]
        crit, hi = rows
        assert crit["current_stock"] == 5
        assert crit["suggested_quantity"] == 27
        assert crit["priority"] == "CRITICAL"
        assert crit["days_of_stock"] == 4
        assert hi["average_daily_consumption"] == 1.0
        assert hi["days_of_stock"] == 10
        assert hi["suggested_quantity"] == 20
        assert hi["priority"] == "HIGH"

    def test_sales_outside_lookback_ignored(self, db_session, branch_a, make_product, days_ago):
        product = make_product(branch_a, stock=100, occurred_at=days_ago(200))
        _sell(branch_a, product, 99, occurred_at=days_ago(120))

        assert analytics_service.reorder_suggestions(branch_id=branch_a.id) == []


class TestSummaries:
    def test_movement_summary(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=10, cost=100)
        inventory_service.register_entry(product_id=product.id, quantity=5)
        inventory_service.register_entry(product_id=product.id, quantity=1)
        inventory_service.register_exit(product_id=product.id, quantity=2, reason="Use")

        report = analytics_service.movement_summary(branch_id=branch_a.id)
        by_kind = {r["kind"]: r for r in report["rows"]}

        assert by_kind["ENTRY"] == {"kind": "ENTRY", "movements": 2, "units": 6, "value_cents": 600}
        assert by_kind["EXIT"]["value_cents"] == 200
        assert report["totals"]["movements"] == 4
        assert report["totals"]["units"] == 18

    def test_most_moved_products(self, db_session, branch_a, make_product):
        busy = make_product(branch_a, code="BUSY", stock=10)
        quiet = make_product(branch_a, code="QUIET", stock=10)
        for _ in range(3):
            inventory_service.register_exit(product_id=busy.id, quantity=1, reason="Use")

        rows = analytics_service.most_moved_products(branch_id=branch_a.id, limit=5)

        assert [(r["code"], r["movements"]) for r in rows] == [("BUSY", 4), ("QUIET", 1)]
        assert rows[0]["units"] == 13
        assert quiet.id == rows[1]["product_id"]

    def test_inventory_valuation(self, db_session, branch_a, branch_b, make_product):
        make_product(branch_a, code="A1", stock=10, cost=100, price=150)
        make_product(branch_a, code="A2", stock=2, cost=1000, price=1500)
        make_product(branch_b, code="B1", stock=4, cost=50, price=100)

        report = analytics_service.inventory_valuation()
        by_branch = {b["code"]: b for b in report["branches"]}

        assert by_branch["NORTH"]["cost_value_cents"] == 3000
        assert by_branch["NORTH"]["retail_value_cents"] == 4500
        assert by_branch["SOUTH"]["units"] == 4
        assert report["totals"]["cost_value_cents"] == 3200
        assert report["totals"]["retail_value_cents"] == 4900
        assert report["totals"]["potential_margin_cents"] == 1700

    def test_low_stock_alerts(self, db_session, branch_a, make_product):
        make_product(branch_a, code="OK", stock=20, threshold=5)
        make_product(branch_a, code="EDGE", stock=5, threshold=5)
        make_product(branch_a, code="OUT", threshold=5)

        rows = analytics_service.low_stock_alerts(branch_id=branch_a.id)

        assert [(r["code"], r["shortfall"]) for r in rows] == [("OUT", 5), ("EDGE", 0)]

    def test_reports_do_not_write(self, db_session, branch_a, make_product):
        make_product(branch_a, stock=10)
        before = db_session.query(StockMovement).count()

        analytics_service.detect_discrepancies()
        analytics_service.rotation_index()
        analytics_service.reorder_suggestions()
        analytics_service.inventory_valuation()

        assert db_session.query(StockMovement).count() == before


class TestReadSnapshot:
    def test_ends_only_the_transaction_it_started(self, db_session, branch_a, make_product):
        make_product(branch_a, stock=3)
        db_session.commit()
        assert not db_session().in_transaction()

        with analytics_service.read_snapshot():
            assert db_session().in_transaction()
        assert not db_session().in_transaction()

    def test_reuses_an_open_caller_transaction(self, db_session, branch_a, make_product):
        make_product(branch_a, stock=3)
        assert db_session.query(Product).count() == 1
        assert db_session().in_transaction()

        rows = analytics_service.detect_discrepancies(branch_id=branch_a.id)

        assert rows == []
        assert db_session().in_transaction()
