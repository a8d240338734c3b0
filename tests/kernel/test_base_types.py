"""Tests for the shared column types (catalog_kernel/db/base.py)."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from catalog_ingestion.models.catalog import VendorModel
from catalog_kernel.db.base import UTCDateTime


class TestUTCDateTime:
    def _reload(self, session, value):
        session.add(VendorModel(name="Acme Mills", date_added=value))
        session.flush()
        session.expire_all()
        return session.execute(select(VendorModel)).scalar_one().date_added

    def test_aware_value_round_trips(self, session, deterministic_clock):
        loaded = self._reload(session, deterministic_clock.now())
        assert loaded == deterministic_clock.now()
        assert loaded.tzinfo == timezone.utc

    def test_offset_normalized_to_utc(self, session):
        eastern = timezone(timedelta(hours=-5))
        loaded = self._reload(session, datetime(2024, 1, 1, 7, 0, tzinfo=eastern))
        assert loaded == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert loaded.utcoffset() == timedelta(0)

    def test_naive_value_read_as_utc(self):
        column_type = UTCDateTime()
        loaded = column_type.process_result_value(datetime(2024, 1, 1, 12, 0), None)
        assert loaded == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_none_passes_through(self):
        column_type = UTCDateTime()
        assert column_type.process_bind_param(None, None) is None
        assert column_type.process_result_value(None, None) is None
