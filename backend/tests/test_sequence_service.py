# Overview: Pytest coverage for the sale id sequencer.

from datetime import date, datetime

import pytest

from branchstock.models import SaleSequence
from branchstock.services.sequence_service import SequenceError, format_sale_id, next_sale_id


class TestFormat:
    def test_zero_padded(self):
        assert format_sale_id("VTA", date(2026, 10, 19), 7) == "VTA-20261019-0007"

    def test_counter_grows_beyond_padding(self):
        assert format_sale_id("VTA", date(2026, 10, 19), 12345) == "VTA-20261019-12345"


class TestNextSaleId:
    def test_increments_per_day(self, db_session):
        day = date(2026, 10, 19)

        ids = [next_sale_id(day) for _ in range(3)]

        assert ids == ["VTA-20261019-0001", "VTA-20261019-0002", "VTA-20261019-0003"]
        row = db_session.query(SaleSequence).filter_by(prefix="VTA", business_date=day).one()
        assert row.last_number == 3

    def test_days_are_independent(self, db_session):
        assert next_sale_id(date(2026, 10, 19)) == "VTA-20261019-0001"
        assert next_sale_id(date(2026, 10, 20)) == "VTA-20261020-0001"
        assert next_sale_id(date(2026, 10, 19)) == "VTA-20261019-0002"

    def test_prefix_override_and_datetime_input(self, db_session):
        assert next_sale_id(datetime(2026, 1, 2, 15, 30), prefix="POS") == "POS-20260102-0001"
        assert next_sale_id(date(2026, 1, 2)) == "VTA-20260102-0001"

    def test_prefix_from_config(self, app, db_session):
        app.config["SALE_ID_PREFIX"] = "SHOP"
        try:
            assert next_sale_id(date(2026, 3, 4)) == "SHOP-20260304-0001"
        finally:
            app.config["SALE_ID_PREFIX"] = "VTA"

    def test_rejects_non_date(self, db_session):
        with pytest.raises(SequenceError):
            next_sale_id("2026-10-19")
