import itertools
import threading
import time
from datetime import datetime, timedelta, timezone

from smartmark.errors import RejectedError, SubscriptionError
from smartmark.services.feed import Subscription
from smartmark.services.records import Record


BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_record(record_id, minutes=0, owner=1, url=None, title=None):
    return Record(
        id=record_id,
        owner_id=owner,
        url=url or f"https://example.com/{record_id}",
        title=title or f"Bookmark {record_id}",
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


class FakeStore:
    def __init__(self, records=None, first_id=100):
        self.records = {record.id: record for record in records or []}
        self.calls = []
        self.fetch_gate = threading.Event()
        self.fetch_gate.set()
        self.insert_gate = threading.Event()
        self.insert_gate.set()
        self.fail_fetch = None
        self.fail_insert = None
        self.fail_delete = None
        self._ids = itertools.count(first_id)
        self._lock = threading.Lock()

    def fetch_all(self, user_id):
        self.calls.append(("fetch_all", user_id))
        self.fetch_gate.wait(5)
        if self.fail_fetch:
            raise self.fail_fetch
        with self._lock:
            return [r for r in self.records.values() if r.owner_id == user_id]

    def insert(self, payload, user_id):
        self.calls.append(("insert", payload))
        self.insert_gate.wait(5)
        if self.fail_insert:
            raise self.fail_insert
        with self._lock:
            record_id = next(self._ids)
            record = Record(
                id=record_id,
                owner_id=user_id,
                url=payload.url,
                title=payload.title,
                created_at=BASE_TIME + timedelta(hours=1, minutes=record_id),
            )
            self.records[record_id] = record
            return record

    def delete(self, record_id, user_id):
        self.calls.append(("delete", record_id))
        if self.fail_delete:
            raise self.fail_delete
        with self._lock:
            record = self.records.get(record_id)
            if not record or record.owner_id != user_id:
                raise RejectedError("bookmark not found")
            del self.records[record_id]

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


class FakeFeed:
    def __init__(self):
        self.subscriptions = []
        self.unsubscribed = []
        self.fail_subscribe = 0

    def subscribe(self, user_id, on_event, on_error=None):
        if self.fail_subscribe:
            self.fail_subscribe -= 1
            raise SubscriptionError("feed unavailable")
        subscription = Subscription(
            len(self.subscriptions) + 1, user_id, on_event, on_error
        )
        self.subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription):
        subscription.cancel()
        self.unsubscribed.append(subscription)

    def active(self):
        return [s for s in self.subscriptions if s.active]

    def emit(self, event):
        for subscription in self.active():
            subscription.deliver(event)

    def drop(self):
        for subscription in self.active():
            subscription.fail(SubscriptionError("connection reset"))


