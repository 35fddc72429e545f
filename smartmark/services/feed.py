from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable

import httpx
from flask import Flask, current_app

from smartmark.errors import SubscriptionError
from smartmark.services.records import Added, Removed, event_from_dict


logger = logging.getLogger(__name__)

FEED_EXTENSION_KEY = "smartmark.feed"

EventCallback = Callable[[Added | Removed], None]
ErrorCallback = Callable[[SubscriptionError], None]


class Subscription:
    """Handle returned by ``subscribe``.

    Once cancelled (by ``unsubscribe`` or by a channel failure) the handle
    never delivers another event.
    """

    def __init__(
        self,
        subscription_id: int,
        user_id,
        on_event: EventCallback,
        on_error: ErrorCallback | None = None,
    ):
        self.id = subscription_id
        self.user_id = user_id
        self._on_event = on_event
        self._on_error = on_error
        self._cancelled = threading.Event()

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def wait_cancelled(self, timeout: float) -> bool:
        return self._cancelled.wait(timeout)

    def deliver(self, event: Added | Removed) -> None:
        if self.active:
            self._on_event(event)

    def fail(self, exc: SubscriptionError) -> None:
        if not self.active:
            return
        self.cancel()
        if self._on_error is not None:
            self._on_error(exc)


class LocalChangeFeed:
    """In-process change feed.

    The API publishes here after each committed bookmark change; in-process
    subscribers get the event directly and the ``/feed`` long-poll waits on
    the per-user version counter.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._subscriptions: dict[int, Subscription] = {}
        self._versions: dict = {}
        self._ids = itertools.count(1)
        self._closed = False

    def subscribe(
        self, user_id, on_event: EventCallback, on_error: ErrorCallback | None = None
    ) -> Subscription:
        with self._lock:
            if self._closed:
                raise SubscriptionError("change feed is closed")
            subscription = Subscription(next(self._ids), user_id, on_event, on_error)
            self._subscriptions[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.cancel()
        with self._lock:
            self._subscriptions.pop(subscription.id, None)

    def subscriber_count(self, user_id=None) -> int:
        with self._lock:
            return sum(
                1
                for subscription in self._subscriptions.values()
                if user_id is None or subscription.user_id == user_id
            )

    def publish(self, user_id, event: Added | Removed) -> None:
        with self._changed:
            self._versions[user_id] = self._versions.get(user_id, 0) + 1
            targets = [
                subscription
                for subscription in self._subscriptions.values()
                if subscription.user_id == user_id
            ]
            self._changed.notify_all()

        for subscription in targets:
            try:
                subscription.deliver(event)
            except Exception:
                logger.exception(
                    "Feed subscriber %s failed handling %r", subscription.id, event
                )

    def version(self, user_id) -> int:
        with self._lock:
            return self._versions.get(user_id, 0)

    def wait_for_change(self, user_id, version: int, timeout: float) -> bool:
        """Block until ``user_id`` has a version newer than ``version``."""
        with self._changed:
            return self._changed.wait_for(
                lambda: self._closed or self._versions.get(user_id, 0) != version,
                timeout=timeout,
            )

    def close(self) -> None:
        with self._changed:
            self._closed = True
            targets = list(self._subscriptions.values())
            self._subscriptions.clear()
            self._changed.notify_all()
        for subscription in targets:
            subscription.fail(SubscriptionError("change feed closed"))


def init_feed(app: Flask) -> LocalChangeFeed:
    feed = LocalChangeFeed()
    app.extensions[FEED_EXTENSION_KEY] = feed
    return feed


def get_feed(app: Flask | None = None) -> LocalChangeFeed:
    return (app or current_app).extensions[FEED_EXTENSION_KEY]


class PollingChangeFeed:
    """Change feed backed by the ``/feed`` long-poll endpoint.

    Each subscription runs one daemon thread. Events are fetched strictly
    after the cursor returned by ``/feed/head`` at subscribe time.
    """

    def __init__(
        self,
        client: httpx.Client,
        wait_seconds: float = 20.0,
        poll_interval: float = 1.0,
        request_timeout: float = 10.0,
        batch_size: int = 200,
    ):
        self._client = client
        self._wait_seconds = max(0.0, wait_seconds)
        self._poll_interval = max(0.0, poll_interval)
        self._request_timeout = request_timeout
        self._batch_size = batch_size
        self._ids = itertools.count(1)

    def subscribe(
        self, user_id, on_event: EventCallback, on_error: ErrorCallback | None = None
    ) -> Subscription:
        try:
            response = self._client.get("/feed/head", timeout=self._request_timeout)
            response.raise_for_status()
            head = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SubscriptionError(f"could not open change feed: {exc}") from exc

        if head.get("user_id") != user_id:
            raise SubscriptionError("change feed identity does not match user")

        subscription = Subscription(next(self._ids), user_id, on_event, on_error)
        thread = threading.Thread(
            target=self._poll,
            args=(subscription, int(head.get("cursor") or 0)),
            daemon=True,
            name=f"feed-poll-{user_id}-{subscription.id}",
        )
        thread.start()
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        # The poll thread notices on its next loop; an in-flight long-poll
        # finishes first and its events are dropped by the handle.
        subscription.cancel()

    def _poll(self, subscription: Subscription, cursor: int) -> None:
        while subscription.active:
            try:
                response = self._client.get(
                    "/feed",
                    params={
                        "since": cursor,
                        "limit": self._batch_size,
                        "wait": self._wait_seconds,
                    },
                    timeout=self._wait_seconds + self._request_timeout,
                )
                response.raise_for_status()
                data = response.json()
                events = [
                    (int(item["cursor"]), event_from_dict(item))
                    for item in data.get("events") or []
                ]
            except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
                logger.warning(
                    "Change feed for user %s dropped: %s", subscription.user_id, exc
                )
                subscription.fail(SubscriptionError(f"change feed dropped: {exc}"))
                return

            for event_cursor, event in events:
                if not subscription.active:
                    return
                try:
                    subscription.deliver(event)
                except Exception:
                    logger.exception("Feed subscriber failed handling %r", event)
                cursor = max(cursor, event_cursor)
            cursor = max(cursor, int(data.get("cursor") or cursor))

            if not data.get("has_more") and self._poll_interval:
                subscription.wait_cancelled(self._poll_interval)
