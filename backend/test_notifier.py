"""Scheduled reminder delivery."""
import asyncio
import os
import threading
from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from roster.core.exceptions import StoreError
from roster.db.base import utcnow
from roster.models.enums import Ict, UsrType
from roster.models.scheduled_notification import ScheduledNotification
from roster.notifier.scheduler import format_reminder, process_scheduled_notifications
from roster.services.scheduled_notifications import NotificationBatch, batch_factory


@pytest.fixture
def make_due(db):
    def make(availability, minutes_ago=1):
        notification = ScheduledNotification(
            avail_id=availability.id,
            scheduled_time=utcnow() - timedelta(minutes=minutes_ago),
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification
    return make


def _sent_flags(db):
    db.expire_all()
    return [row.sent for row in db.query(ScheduledNotification).order_by(ScheduledNotification.id)]


def test_format_reminder_for_ns_user():
    availability = SimpleNamespace(
        avail=date(2026, 12, 1),
        ict_type=Ict.LIVE,
        remarks="x" * 60,
        saf100=False,
        planned=True,
    )
    user = SimpleNamespace(usr_type=UsrType.NS)
    assert format_reminder(availability, user) == (
        "Reminder: Upcoming Planned Event\n"
        "\n"
        "Date: Dec 01, 2026\n"
        "Type: LIVE\n"
        f"Remarks: {'x' * 50}...\n"
        "SAF100 Pending\n"
        "\n"
        "Please wait for the flight schedule to be sent."
    )


def test_format_reminder_for_active_user():
    availability = SimpleNamespace(avail=date(2026, 12, 1), ict_type=Ict.SIMS, remarks=None, saf100=True, planned=True)
    text = format_reminder(availability, SimpleNamespace(usr_type=UsrType.ACTIVE))
    assert "Remarks: None" in text
    assert "SAF100" not in text


def test_due_reminders_are_sent_and_marked(db, session_factory, gateway, make_user, make_availability, make_due):
    user = make_user(1001, "ALPHA")
    availability = make_availability(user, 3, planned=True)
    make_due(availability)
    make_due(availability, minutes_ago=5)
    future = make_due(availability, minutes_ago=-60)

    processed = asyncio.run(process_scheduled_notifications(batch_factory(session_factory), gateway))

    assert processed == 2
    assert len(gateway.texts(1001)) == 2
    assert gateway.texts(1001)[0].startswith("Reminder: Upcoming Planned Event")
    db.expire_all()
    assert db.get(ScheduledNotification, future.id).sent is False
    assert _sent_flags(db).count(True) == 2


def test_nothing_due(session_factory, gateway):
    assert asyncio.run(process_scheduled_notifications(batch_factory(session_factory), gateway)) == 0
    assert gateway.sent == []


def test_invalid_availability_or_user_is_skipped(db, session_factory, gateway, make_user, make_availability, make_due):
    user = make_user(1001, "ALPHA")
    leaver = make_user(1002, "BRAVO")
    withdrawn = make_availability(user, 3, planned=True)
    orphaned = make_availability(leaver, 3, planned=True)
    make_due(withdrawn)
    make_due(orphaned)
    withdrawn.is_valid = False
    leaver.is_valid = False
    db.commit()

    processed = asyncio.run(process_scheduled_notifications(batch_factory(session_factory), gateway))

    assert processed == 0
    assert gateway.sent == []
    assert _sent_flags(db) == [False, False]


def test_failed_send_is_still_marked(db, session_factory, gateway, make_user, make_availability, make_due):
    user = make_user(1001, "ALPHA")
    make_due(make_availability(user, 3, planned=True))
    gateway.fail_chats.add(1001)

    assert asyncio.run(process_scheduled_notifications(batch_factory(session_factory), gateway)) == 1
    assert _sent_flags(db) == [True]


def test_store_failure_rolls_back_whole_batch(
    db, session_factory, gateway, make_user, make_availability, make_due, monkeypatch
):
    users = [make_user(1001 + i, f"USER{i}") for i in range(3)]
    for user in users:
        make_due(make_availability(user, 3, planned=True))

    real_get_user = NotificationBatch.get_user
    calls = []

    def flaky_get_user(self, user_id):
        calls.append(user_id)
        if len(calls) == 2:
            raise StoreError("fetch user")
        return real_get_user(self, user_id)

    monkeypatch.setattr(NotificationBatch, "get_user", flaky_get_user)
    with pytest.raises(StoreError):
        asyncio.run(process_scheduled_notifications(batch_factory(session_factory), gateway))

    # The first reminder went out before the failure, but its row was rolled back
    assert len(gateway.sent) == 1
    assert _sent_flags(db) == [False, False, False]

    monkeypatch.setattr(NotificationBatch, "get_user", real_get_user)
    assert asyncio.run(process_scheduled_notifications(batch_factory(session_factory), gateway)) == 3
    assert len(gateway.sent) == 4
    assert _sent_flags(db) == [True, True, True]


class FakeStore:
    """
    Row-lock semantics of FOR UPDATE SKIP LOCKED, in memory.

    Only this stand-in checks that overlapping ticks claim disjoint rows on
    every run. The same guarantee from a real database is covered by
    test_skip_locked_claims_on_postgres, which runs only when
    TEST_DATABASE_URL points at a PostgreSQL server.
    """

    def __init__(self, count):
        self.rows = {
            i: SimpleNamespace(id=i, avail_id=i, sent=False, is_valid=True, scheduled_time=utcnow() - timedelta(minutes=1))
            for i in range(1, count + 1)
        }
        self.locked = set()
        # Batches run on executor threads
        self.mutex = threading.Lock()

    def open_batch(self):
        return FakeBatch(self)


class FakeBatch:
    def __init__(self, store):
        self.store = store
        self.claimed = []
        self.marked = []

    def claim_due(self, now):
        with self.store.mutex:
            return self._claim(now)

    def _claim(self, now):
        due = [
            row for row in self.store.rows.values()
            if row.scheduled_time <= now and not row.sent and row.is_valid and row.id not in self.store.locked
        ]
        self.store.locked.update(row.id for row in due)
        self.claimed = due
        return due

    def get_availability(self, avail_id):
        return SimpleNamespace(
            user_id=avail_id,
            avail=date(2026, 12, 1),
            ict_type=Ict.LIVE,
            remarks=None,
            saf100=False,
            planned=True,
        )

    def get_user(self, user_id):
        return SimpleNamespace(tele_id=2000 + user_id, ops_name=f"USER{user_id}", usr_type=UsrType.ACTIVE)

    def mark_sent(self, notification):
        self.marked.append(notification)

    def commit(self):
        for row in self.marked:
            row.sent = True
        self._release()

    def rollback(self):
        self._release()

    def close(self):
        self._release()

    def _release(self):
        with self.store.mutex:
            self.store.locked.difference_update(row.id for row in self.claimed)
            self.claimed = []


def test_overlapping_ticks_never_send_a_reminder_twice(gateway):
    store = FakeStore(5)

    async def scenario():
        return await asyncio.gather(
            process_scheduled_notifications(store.open_batch, gateway),
            process_scheduled_notifications(store.open_batch, gateway),
        )

    counts = asyncio.run(scenario())

    assert sorted(counts) == [0, 5]
    assert sorted(message.chat_id for message in gateway.sent) == [2001, 2002, 2003, 2004, 2005]
    assert all(row.sent for row in store.rows.values())
    assert store.locked == set()


@pytest.mark.skipif(not os.getenv("TEST_DATABASE_URL"), reason="needs a PostgreSQL server in TEST_DATABASE_URL; SQLite has no row locks to skip")
def test_skip_locked_claims_on_postgres():
    from roster.db.base import Base
    from roster.db.session import create_db_engine, make_session_factory
    from roster.models.availability import Availability
    from roster.models.enums import RoleType
    from roster.models.user import User

    engine = create_db_engine(os.environ["TEST_DATABASE_URL"])
    Base.metadata.create_all(engine)
    factory = make_session_factory(engine)
    try:
        setup = factory()
        user = User(tele_id=1, name="Alpha", ops_name="ALPHA", usr_type=UsrType.ACTIVE, role_type=RoleType.PILOT)
        setup.add(user)
        setup.flush()
        availability = Availability(user_id=user.id, avail=date.today(), ict_type=Ict.LIVE, planned=True)
        setup.add(availability)
        setup.flush()
        setup.add(ScheduledNotification(avail_id=availability.id, scheduled_time=utcnow() - timedelta(minutes=1)))
        setup.commit()
        setup.close()

        first = NotificationBatch(factory())
        second = NotificationBatch(factory())
        try:
            assert len(first.claim_due(utcnow())) == 1
            assert second.claim_due(utcnow()) == []
        finally:
            first.rollback()
            second.rollback()
            first.close()
            second.close()
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()
