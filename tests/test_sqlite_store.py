"""Tests for the SQLite message, tenant and credential store and its polling feed."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from conftest import TENANT, THREAD
from leadsync.domain.entities.credential import OAuthCredential
from leadsync.domain.entities.inbound_message import build_address
from leadsync.domain.errors import CredentialMissingError
from leadsync.domain.models import TriggerPolicy
from leadsync.infrastructure.sqlite.client import SQLiteClient
from leadsync.infrastructure.sqlite.feed import PollingSubscription, SQLitePollingFeed


@pytest.fixture
def db(tmp_path):
    return SQLiteClient(tmp_path / "leadsync.db")


def address(message_id: str) -> str:
    return build_address(TENANT, THREAD, message_id)


class TestMessages:
    def test_unprocessed_returned_oldest_first(self, db):
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        db.add_message(address("b"), "second", created_at=base + timedelta(seconds=5))
        db.add_message(address("a"), "first", created_at=base)

        records = db.fetch_unprocessed()

        assert [r.text for r in records] == ["first", "second"]
        assert records[0].created_at == base
        assert records[0].sender == "user"

    def test_write_status_marks_processed_and_overwrites(self, db):
        record = db.add_message(address("a"), "hello")
        now = datetime.now(timezone.utc)

        db.write_status(record.ref, {"state": "error"}, now)
        db.write_status(record.ref, {"state": "success"}, now)

        assert db.fetch_unprocessed() == []
        assert db.get_message_status(record.ref) == {"state": "success"}

    def test_write_status_unknown_ref(self, db):
        with pytest.raises(KeyError):
            db.write_status("missing", {}, datetime.now(timezone.utc))


class TestTenants:
    def test_loose_destination_configs_are_validated(self, db):
        db.upsert_tenant(
            TENANT,
            display_name="Sara's Shop",
            destinations=[
                {
                    "sheetId": "sheet-1",
                    "active": True,
                    "addTrigger": "Interest Detected",
                    "interestKeywords": "price, Buy",
                    "autoUpdateFields": False,
                    "columns": [
                        {"id": "name", "name": "Customer Name", "type": "name"},
                        {"id": "phone", "name": "Phone Number", "type": "phone", "aiPrompt": "the phone"},
                    ],
                },
                {"sheetId": "broken", "columns": "not-a-list"},
            ],
        )

        tenant = db.get_tenant(TENANT)

        assert tenant.display_name == "Sara's Shop"
        [config] = tenant.destinations
        assert config.destination_id == "sheet-1"
        assert config.trigger_policy == TriggerPolicy.ON_DETECTED_INTEREST
        assert config.interest_keywords == frozenset({"price", "buy"})
        assert not config.auto_update_existing
        assert config.columns[1].extraction_prompt == "the phone"

    def test_unknown_tenant(self, db):
        assert db.get_tenant("nobody") is None

    def test_thread_state(self, db):
        db.upsert_thread(TENANT, THREAD, agent_status="off", contact_name="Sara")

        thread = db.get_thread(TENANT, THREAD)

        assert thread.agent_disabled
        assert thread.contact_name == "Sara"
        assert db.get_thread(TENANT, "other") is None


class TestCredentials:
    def test_save_and_load_round_trip(self, db, cipher):
        expires = datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc)
        credential = OAuthCredential(
            tenant_id=TENANT,
            access_token=cipher.encrypt("a"),
            refresh_token=cipher.encrypt("r"),
            expires_at=expires,
        )

        db.save(credential)
        loaded = db.load(TENANT)

        assert loaded.access_token == credential.access_token
        assert loaded.refresh_token == credential.refresh_token
        assert loaded.expires_at == expires

    def test_save_access_token_keeps_refresh_token(self, db, cipher):
        refresh = cipher.encrypt("r")
        db.save(OAuthCredential(TENANT, cipher.encrypt("a"), refresh, datetime.now(timezone.utc)))
        new_expiry = datetime(2030, 1, 1, tzinfo=timezone.utc)

        db.save_access_token(TENANT, cipher.encrypt("b"), new_expiry)

        loaded = db.load(TENANT)
        assert cipher.decrypt(loaded.access_token) == "b"
        assert loaded.refresh_token == refresh
        assert loaded.expires_at == new_expiry

    def test_save_access_token_without_credential(self, db, cipher):
        with pytest.raises(CredentialMissingError):
            db.save_access_token(TENANT, cipher.encrypt("b"), datetime.now(timezone.utc))


class TestPollingFeed:
    def test_delivers_only_newly_added_records(self, db):
        delivered = []
        # Polled by hand, the background thread is never started
        subscription = PollingSubscription(db, delivered.append, lambda e: None, poll_interval=60, batch_size=100)

        first = db.add_message(address("a"), "hello")
        assert subscription.poll_once() == 1
        assert subscription.poll_once() == 0
        db.add_message(address("b"), "again")
        assert subscription.poll_once() == 1

        assert [[r.address for r in batch] for batch in delivered] == [[first.address], [address("b")]]

    def test_test_messages_are_not_delivered(self, db):
        delivered = []
        subscription = PollingSubscription(db, delivered.extend, lambda e: None, poll_interval=60, batch_size=3)

        for i in range(3):
            db.add_message(address(f"test{i}"), "ping", is_test=True)
        real = db.add_message(address("real"), "I want a sofa")

        assert subscription.poll_once() == 1
        assert [r.address for r in delivered] == [real.address]

    def test_unmarked_backlog_does_not_starve_new_messages(self, db):
        delivered = []
        subscription = PollingSubscription(db, delivered.extend, lambda e: None, poll_interval=60, batch_size=2)

        # Delivered but never marked, e.g. after a failed status write
        for i in range(3):
            db.add_message(address(f"stuck{i}"), "hello")
        for _ in range(3):
            subscription.poll_once()
        newest = db.add_message(address("new"), "hello again")

        assert subscription.poll_once() == 1
        assert delivered[-1].address == newest.address
        assert len(delivered) == 4

    def test_subscribe_starts_background_polling(self, db):
        delivered = threading.Event()
        db.add_message(address("a"), "hello")

        subscription = SQLitePollingFeed(db, poll_interval=0.01).subscribe(lambda records: delivered.set(), lambda e: None)
        try:
            assert delivered.wait(timeout=5)
            assert subscription.active
        finally:
            subscription.unsubscribe()
        assert not subscription.active

    def test_poll_failure_reports_error_and_stops(self, db, monkeypatch):
        errors = []
        reported = threading.Event()

        def fail(after=0, limit=100):
            raise RuntimeError("disk I/O error")

        monkeypatch.setattr(db, "fetch_pending", fail)

        def on_error(exc):
            errors.append(exc)
            reported.set()

        subscription = SQLitePollingFeed(db, poll_interval=0.01).subscribe(lambda records: None, on_error)

        assert reported.wait(timeout=5)
        assert str(errors[0]) == "disk I/O error"
        subscription.unsubscribe()
        assert not subscription.active
