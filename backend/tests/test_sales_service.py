# Overview: Pytest coverage for sale recording, cancellation and sale ids.

import re

import pytest
from sqlalchemy import update

from branchstock.errors import (
    AlreadyCancelled,
    BranchNotFound,
    ConcurrencyConflict,
    InsufficientStock,
    InvalidQuantity,
    InvalidSale,
    ProductNotFound,
    SaleNotFound,
)
from branchstock.models import Product, Sale, SaleLine, StockMovement
from branchstock.services import inventory_service, sales_service


SALE_ID = re.compile(r"^VTA-\d{8}-\d{4}$")


def _stock(db_session, product_id):
    return db_session.get(Product, product_id).current_stock


class TestRecordSale:
    def test_entry_sale_cancel_scenario(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=50, cost=1000)

        entry = inventory_service.register_entry(product_id=product.id, quantity=20)
        assert (entry.movement.stock_before, entry.movement.stock_after) == (50, 70)

        sale, mutation = sales_service.record_sale(
            branch_id=branch_a.id,
            lines=[{"product_id": product.id, "quantity": 5, "unit_price_cents": 2000}],
        )
        assert _stock(db_session, product.id) == 65
        assert sale.total_cents == 10000
        assert sale.status == "COMPLETED"
        sale_mv = mutation.movement
        assert (sale_mv.kind, sale_mv.stock_before, sale_mv.stock_after) == ("SALE", 70, 65)
        assert sale_mv.related_sale_id == sale.id

        cancelled, reversal = sales_service.cancel_sale(sale_id=sale.id, reason="Customer changed mind")
        assert cancelled.status == "CANCELLED"
        assert cancelled.cancel_reason == "Customer changed mind"
        assert _stock(db_session, product.id) == 70
        rev_mv = reversal.movement
        assert (rev_mv.kind, rev_mv.stock_before, rev_mv.stock_after) == ("SALE_REVERSAL", 65, 70)

    def test_sale_ids_are_sequential(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=10)

        first, _ = sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 1}])
        second, _ = sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 1}])

        assert SALE_ID.match(first.id)
        assert first.id.endswith("-0001")
        assert second.id.endswith("-0002")
        assert first.id[:-4] == second.id[:-4]

    def test_price_defaults_to_catalog_and_is_frozen(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=10, price=1500)

        sale, _ = sales_service.record_sale(
            branch_id=branch_a.id,
            lines=[{"product_id": product.id, "quantity": 2}],
            discount_cents=500,
        )
        product = db_session.get(Product, product.id)
        product.unit_price_cents = 9999
        db_session.commit()

        sale = sales_service.get_sale(sale.id)
        assert sale.lines[0].unit_price_cents == 1500
        assert sale.lines[0].line_subtotal_cents == 3000
        assert (sale.subtotal_cents, sale.discount_cents, sale.total_cents) == (3000, 500, 2500)

    def test_multi_line_sale(self, db_session, branch_a, make_product):
        coffee = make_product(branch_a, code="COFFEE", stock=10)
        milk = make_product(branch_a, code="MILK", stock=10)

        sale, mutation = sales_service.record_sale(
            branch_id=branch_a.id,
            lines=[
                {"product_id": milk.id, "quantity": 3, "unit_price_cents": 100},
                {"product_id": coffee.id, "quantity": 2, "unit_price_cents": 500},
            ],
        )

        assert [line.line_number for line in sale.lines] == [1, 2]
        assert [mv.product_id for mv in mutation.movements] == [milk.id, coffee.id]
        assert _stock(db_session, milk.id) == 7
        assert _stock(db_session, coffee.id) == 8
        assert sale.total_cents == 1300

    def test_aggregated_oversell_rejected_without_writes(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=5)
        other = make_product(branch_a, code="OTHER", stock=5)

        with pytest.raises(InsufficientStock) as excinfo:
            sales_service.record_sale(
                branch_id=branch_a.id,
                lines=[
                    {"product_id": product.id, "quantity": 3},
                    {"product_id": other.id, "quantity": 1},
                    {"product_id": product.id, "quantity": 3},
                ],
            )

        assert excinfo.value.line_number == 3
        assert excinfo.value.requested == 6
        assert excinfo.value.available == 5
        assert _stock(db_session, product.id) == 5
        assert _stock(db_session, other.id) == 5
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLine).count() == 0
        assert db_session.query(StockMovement).filter_by(kind="SALE").count() == 0

    def test_failed_sale_does_not_consume_sale_id(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=1)

        with pytest.raises(InsufficientStock):
            sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 2}])
        sale, _ = sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 1}])

        assert sale.id.endswith("-0001")

    def test_product_from_other_branch_rejected(self, db_session, branch_a, branch_b, make_product):
        product = make_product(branch_b, stock=5)

        with pytest.raises(ProductNotFound):
            sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 1}])

    def test_validation_errors(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=5, price=100)

        with pytest.raises(InvalidSale):
            sales_service.record_sale(branch_id=branch_a.id, lines=[])
        with pytest.raises(InvalidQuantity):
            sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 0}])
        with pytest.raises(InvalidSale):
            sales_service.record_sale(
                branch_id=branch_a.id,
                lines=[{"product_id": product.id, "quantity": 1}],
                discount_cents=101,
            )
        with pytest.raises(BranchNotFound):
            sales_service.record_sale(branch_id=424242, lines=[{"product_id": product.id, "quantity": 1}])

        assert _stock(db_session, product.id) == 5

    def test_retry_snapshots_catalog_price_again(self, monkeypatch, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=10, price=500)
        real_commit = sales_service.commit_unit
        calls = []

        def _commit_after_price_change():
            calls.append(1)
            if len(calls) == 1:
                # Lose the first attempt after the catalog price moved underneath it
                db_session.rollback()
                db_session.execute(update(Product).where(Product.id == product.id).values(unit_price_cents=999))
                db_session.commit()
                raise ConcurrencyConflict("lost race")
            real_commit()

        monkeypatch.setattr(sales_service, "commit_unit", _commit_after_price_change)

        sale, _ = sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 2}])

        assert len(calls) == 2
        assert sale.lines[0].unit_price_cents == 999
        assert sale.total_cents == 1998
        assert _stock(db_session, product.id) == 8


class TestCancelSale:
    def test_cancel_twice_rejected_without_new_movements(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=10)
        sale, _ = sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 4}])
        sales_service.cancel_sale(sale_id=sale.id, reason="Wrong item")
        movement_count = db_session.query(StockMovement).count()

        with pytest.raises(AlreadyCancelled):
            sales_service.cancel_sale(sale_id=sale.id, reason="Again")

        assert db_session.query(StockMovement).count() == movement_count
        assert _stock(db_session, product.id) == 10

    def test_cancel_is_additive_after_intervening_movements(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=20)
        sale, _ = sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 5}])
        inventory_service.register_entry(product_id=product.id, quantity=10)
        inventory_service.register_exit(product_id=product.id, quantity=7, reason="Use")

        sales_service.cancel_sale(sale_id=sale.id)

        # 20 - 5 + 10 - 7 + 5
        assert _stock(db_session, product.id) == 23

    def test_cancel_restores_deactivated_product(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=10)
        sale, _ = sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 3}])
        product = db_session.get(Product, product.id)
        product.is_active = False
        db_session.commit()

        sales_service.cancel_sale(sale_id=sale.id)

        assert _stock(db_session, product.id) == 10

    def test_cancel_unknown_sale(self, db_session):
        with pytest.raises(SaleNotFound):
            sales_service.cancel_sale(sale_id="VTA-20000101-0001")

    def test_list_sales_by_status(self, db_session, branch_a, make_product):
        product = make_product(branch_a, stock=10)
        kept, _ = sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 1}])
        dropped, _ = sales_service.record_sale(branch_id=branch_a.id, lines=[{"product_id": product.id, "quantity": 1}])
        sales_service.cancel_sale(sale_id=dropped.id)

        completed = sales_service.list_sales(branch_id=branch_a.id, status="COMPLETED")
        cancelled = sales_service.list_sales(branch_id=branch_a.id, status="CANCELLED")

        assert [s.id for s in completed] == [kept.id]
        assert [s.id for s in cancelled] == [dropped.id]
