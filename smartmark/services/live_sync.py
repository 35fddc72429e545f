"""Live, user-scoped view of a bookmark collection.

A :class:`LiveCollection` merges three unordered sources into one list:
snapshots fetched from the store, add/remove events pushed by the change
feed, and the user's own creates and deletes. Every record observation is a
union by id and every removal a difference by id, so the view converges to
the store whatever order (or how many times) the sources report a change.

Removed ids are remembered for the lifetime of an activation. Store ids are
never reused, so a late ``Added`` for a removed id is always stale.

Each activation gets an epoch. Work started under an older epoch may still
finish after ``deactivate()``; its result is dropped.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable

from smartmark.errors import SubscriptionError, SyncError, ValidationError
from smartmark.services.common import validate_bookmark
from smartmark.services.records import Added, Record, Removed, sort_records


logger = logging.getLogger(__name__)

STATE_INACTIVE = "inactive"
STATE_LOADING = "loading"
STATE_SYNCED = "synced"
STATE_SYNCED_PENDING = "synced_pending"


class LiveCollection:
    def __init__(
        self,
        store,
        feed,
        workers: int = 4,
        resubscribe_attempts: int = 3,
        resubscribe_backoff: float = 1.0,
    ):
        self._store = store
        self._feed = feed
        self._workers = max(1, workers)
        self._resubscribe_attempts = max(0, resubscribe_attempts)
        self._resubscribe_backoff = max(0.0, resubscribe_backoff)
        self._lock = threading.RLock()
        self._listeners: list[Callable[["LiveCollection"], None]] = []
        self._epoch = 0
        self._executor: ThreadPoolExecutor | None = None
        self._stopped = threading.Event()
        self._error: str | None = None
        self._reset(None)

    def _reset(self, user_id) -> None:
        self._user_id = user_id
        self._records: dict[Any, Record] = {}
        self._order: list[Record] = []
        self._tombstones: set = set()
        self._seen_at: dict[Any, int] = {}
        self._observations = 0
        self._snapshot_requests = 0
        self._applied_snapshot = 0
        self._loading = False
        self._pending = 0
        self._subscription = None
        self._live = False
        self._failed_subscribes = 0

    # -- observers -----------------------------------------------------------

    @property
    def user_id(self):
        return self._user_id

    @property
    def items(self) -> tuple[Record, ...]:
        with self._lock:
            return tuple(self._order)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._order)

    def __len__(self) -> int:
        return self.count

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def live(self) -> bool:
        return self._live

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def state(self) -> str:
        with self._lock:
            if self._user_id is None:
                return STATE_INACTIVE
            if self._loading:
                return STATE_LOADING
            if self._pending:
                return STATE_SYNCED_PENDING
            return STATE_SYNCED

    def dismiss_error(self) -> None:
        with self._lock:
            self._error = None
        self._notify()

    def add_listener(self, callback: Callable[["LiveCollection"], None]) -> None:
        self._listeners.append(callback)

    # -- lifecycle -------------------------------------------------------------

    def activate(self, user_id) -> "LiveCollection":
        self.deactivate()
        with self._lock:
            self._epoch += 1
            epoch = self._epoch
            self._reset(user_id)
            self._error = None
            self._loading = True
            self._stopped = threading.Event()
            self._executor = ThreadPoolExecutor(
                max_workers=self._workers,
                thread_name_prefix=f"live-sync-{user_id}",
            )
            self._submit(self._executor, self._start, epoch)
        logger.debug(
            "Activated live collection for user %s (epoch %s)", user_id, epoch
        )
        self._notify()
        return self

    def deactivate(self, wait: bool = False) -> None:
        with self._lock:
            if self._user_id is None and self._executor is None:
                return
            self._epoch += 1
            executor = self._executor
            subscription = self._subscription
            user_id = self._user_id
            self._executor = None
            self._stopped.set()
            self._reset(None)

        if subscription is not None:
            self._feed.unsubscribe(subscription)
        if executor is not None:
            executor.shutdown(wait=wait, cancel_futures=True)
        logger.debug("Deactivated live collection for user %s", user_id)
        self._notify()

    def __enter__(self) -> "LiveCollection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.deactivate()

    # -- operations ------------------------------------------------------------

    def on_feed_event(self, event: Added | Removed) -> bool:
        with self._lock:
            if self._user_id is None:
                return False
            changed = self._apply_event(event)
        if changed:
            self._notify()
        return changed

    def create(self, title: str, url: str) -> Future | None:
        try:
            payload = validate_bookmark(title, url)
        except ValidationError as exc:
            self._surface(str(exc))
            return None

        with self._lock:
            executor, epoch = self._require_active()
            self._pending += 1
            future = self._submit(
                executor, self._run_create, epoch, self._user_id, payload
            )
        self._notify()
        return future

    def delete(self, record_id) -> Future:
        with self._lock:
            executor, epoch = self._require_active()
            self._pending += 1
            was_present = self._apply_removed(record_id)
            future = self._submit(
                executor,
                self._run_delete,
                epoch,
                self._user_id,
                record_id,
                was_present,
            )
        self._notify()
        return future

    def refresh(self) -> Future:
        with self._lock:
            executor, epoch = self._require_active()
            return self._submit(executor, self._load_snapshot, epoch)

    # -- internals ---------------------------------------------------------------

    def _require_active(self) -> tuple[ThreadPoolExecutor, int]:
        if self._user_id is None or self._executor is None:
            raise RuntimeError("live collection is not active")
        return self._executor, self._epoch

    def _submit(self, executor: ThreadPoolExecutor, fn, *args) -> Future:
        # Called with self._lock held so deactivate() cannot shut the
        # executor down in between.
        future = executor.submit(fn, *args)
        future.add_done_callback(_log_failure)
        return future

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception:
                logger.exception("Live collection listener failed")

    def _surface(self, message: str, epoch: int | None = None) -> None:
        with self._lock:
            if epoch is not None and epoch != self._epoch:
                return
            self._error = message
        self._notify()

    def _start(self, epoch: int) -> None:
        # Subscribe before the first snapshot request so that no change can
        # fall between the two.
        self._subscribe(epoch)
        self._load_snapshot(epoch)

    def _subscribe(self, epoch: int) -> bool:
        with self._lock:
            if epoch != self._epoch:
                return False
            user_id = self._user_id
        try:
            subscription = self._feed.subscribe(
                user_id,
                partial(self._handle_feed_event, epoch),
                partial(self._handle_feed_error, epoch),
            )
        except SubscriptionError as exc:
            self._handle_feed_error(epoch, exc)
            return False

        with self._lock:
            current = epoch == self._epoch
            # A channel that already failed has been reported through
            # _handle_feed_error.
            opened = current and subscription.active
            if opened:
                self._subscription = subscription
                self._live = True
        if not current:
            self._feed.unsubscribe(subscription)
            return False
        if not opened:
            return False
        self._notify()
        return True

    def _handle_feed_event(self, epoch: int, event: Added | Removed) -> None:
        with self._lock:
            if epoch != self._epoch:
                return
            self._failed_subscribes = 0
            changed = self._apply_event(event)
        if changed:
            self._notify()

    def _handle_feed_error(self, epoch: int, exc: SubscriptionError) -> None:
        with self._lock:
            if epoch != self._epoch:
                return
            self._subscription = None
            self._live = False
            self._failed_subscribes += 1
            attempt = self._failed_subscribes
            user_id = self._user_id
            if attempt > self._resubscribe_attempts:
                # Snapshot-only from here on; create/delete still reconcile.
                self._error = f"Live updates unavailable: {exc}"
            else:
                self._submit(
                    self._executor, self._resubscribe, epoch, attempt, self._stopped
                )
        logger.warning(
            "Change feed failed for user %s (attempt %s): %s", user_id, attempt, exc
        )
        self._notify()

    def _resubscribe(self, epoch: int, attempt: int, stopped: threading.Event) -> None:
        delay = self._resubscribe_backoff * (2 ** (attempt - 1))
        if delay and stopped.wait(delay):
            return
        if self._subscribe(epoch):
            # Anything published while the channel was down is only visible
            # through a fresh snapshot.
            self._load_snapshot(epoch)

    def _load_snapshot(self, epoch: int) -> bool:
        with self._lock:
            if epoch != self._epoch:
                return False
            user_id = self._user_id
            self._snapshot_requests += 1
            request = self._snapshot_requests
            mark = self._observations

        try:
            records = self._store.fetch_all(user_id)
        except SyncError as exc:
            logger.warning("Snapshot for user %s failed: %s", user_id, exc)
            with self._lock:
                if epoch != self._epoch:
                    return False
                self._loading = False
                self._error = str(exc)
            self._notify()
            return False

        with self._lock:
            if epoch != self._epoch:
                logger.debug("Discarding snapshot from superseded epoch %s", epoch)
                return False
            self._apply_snapshot(records, request, mark)
            self._loading = False
        self._notify()
        return True

    def _run_create(self, epoch: int, user_id, payload) -> Record | None:
        try:
            try:
                record = self._store.insert(payload, user_id)
            except SyncError as exc:
                logger.warning("Create for user %s failed: %s", user_id, exc)
                self._surface(str(exc), epoch)
                return None

            with self._lock:
                if epoch != self._epoch:
                    return record
                changed = self._apply_added(record)
            if changed:
                self._notify()
            # The insert result says nothing about what else changed or
            # whether the feed will echo it; reconcile with a full snapshot.
            self._load_snapshot(epoch)
            return record
        finally:
            self._finish_pending(epoch)

    def _run_delete(self, epoch: int, user_id, record_id, was_present: bool) -> bool:
        try:
            try:
                self._store.delete(record_id, user_id)
            except SyncError as exc:
                logger.warning(
                    "Delete of bookmark %s for user %s failed: %s",
                    record_id,
                    user_id,
                    exc,
                )
                with self._lock:
                    if epoch != self._epoch:
                        return False
                    self._tombstones.discard(record_id)
                    self._error = str(exc)
                self._notify()
                if was_present:
                    self._load_snapshot(epoch)
                return False
            return True
        finally:
            self._finish_pending(epoch)

    def _finish_pending(self, epoch: int) -> None:
        with self._lock:
            if epoch != self._epoch:
                return
            self._pending = max(0, self._pending - 1)
        self._notify()

    # The _apply_* helpers run with self._lock held.

    def _apply_event(self, event: Added | Removed) -> bool:
        if isinstance(event, Added):
            return self._apply_added(event.record)
        if isinstance(event, Removed):
            return self._apply_removed(event.record_id)
        logger.warning("Ignoring unknown feed event %r", event)
        return False

    def _apply_added(self, record: Record) -> bool:
        if record.owner_id != self._user_id:
            logger.warning(
                "Ignoring bookmark %s owned by %s in collection of user %s",
                record.id,
                record.owner_id,
                self._user_id,
            )
            return False
        if record.id in self._tombstones or record.id in self._records:
            return False
        self._observations += 1
        self._seen_at[record.id] = self._observations
        self._records[record.id] = record
        self._order = sort_records(self._records.values())
        return True

    def _apply_removed(self, record_id) -> bool:
        self._tombstones.add(record_id)
        self._seen_at.pop(record_id, None)
        if self._records.pop(record_id, None) is None:
            return False
        self._order = sort_records(self._records.values())
        return True

    def _apply_snapshot(self, records: list[Record], request: int, mark: int) -> None:
        if request < self._applied_snapshot:
            logger.debug("Discarding out-of-date snapshot %s", request)
            return
        self._applied_snapshot = request
        self._observations += 1
        observed = self._observations

        fresh: dict[Any, Record] = {}
        for record in records:
            if record.owner_id != self._user_id:
                logger.warning(
                    "Snapshot for user %s contained bookmark %s of user %s",
                    self._user_id,
                    record.id,
                    record.owner_id,
                )
                continue
            if record.id in self._tombstones:
                continue
            fresh[record.id] = record

        for record_id, record in self._records.items():
            if record_id in fresh:
                continue
            if self._seen_at.get(record_id, 0) > mark:
                # Observed after the snapshot was requested.
                fresh[record_id] = record
            else:
                self._tombstones.add(record_id)

        self._seen_at = {
            record_id: self._seen_at.get(record_id, observed) for record_id in fresh
        }
        self._records = fresh
        self._order = sort_records(fresh.values())


def _log_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Live collection task failed", exc_info=exc)
