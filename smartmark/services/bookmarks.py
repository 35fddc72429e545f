from __future__ import annotations

from flask import current_app

from smartmark.extensions import db
from smartmark.models import Bookmark, FeedEvent
from smartmark.services.feed import get_feed
from smartmark.services.records import (
    ACTION_DELETE,
    ACTION_INSERT,
    Added,
    BookmarkPayload,
    Record,
    Removed,
)


def serialize_bookmark_for_feed(bookmark: Bookmark) -> dict:
    return bookmark.as_dict()


def log_feed_event(user_id: int, action: str, bookmark: Bookmark) -> FeedEvent:
    event = FeedEvent(
        user_id=user_id,
        bookmark_id=bookmark.id,
        action=action,
        payload=serialize_bookmark_for_feed(bookmark),
    )
    db.session.add(event)
    return event


def list_bookmarks(user_id: int) -> list[Bookmark]:
    return (
        Bookmark.query.filter_by(user_id=user_id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.asc())
        .all()
    )


def create_bookmark(user_id: int, payload: BookmarkPayload) -> Bookmark:
    bookmark = Bookmark(user_id=user_id, url=payload.url, title=payload.title)
    db.session.add(bookmark)
    db.session.flush()
    log_feed_event(user_id, ACTION_INSERT, bookmark)
    db.session.commit()
    get_feed().publish(user_id, Added(Record.from_dict(bookmark.as_dict())))
    return bookmark


def delete_bookmark(user_id: int, bookmark_id: int) -> bool:
    """Delete one of ``user_id``'s bookmarks.

    Returns False when the bookmark does not exist or belongs to someone
    else; the two cases are indistinguishable to the caller.
    """
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=user_id).first()
    if not bookmark:
        return False
    log_feed_event(user_id, ACTION_DELETE, bookmark)
    db.session.delete(bookmark)
    db.session.commit()
    get_feed().publish(user_id, Removed(bookmark_id))
    return True


def latest_cursor(user_id: int) -> int:
    return (
        db.session.query(db.func.max(FeedEvent.id)).filter_by(user_id=user_id).scalar()
        or 0
    )


def pull_events(user_id: int, since: int, limit: int) -> list[FeedEvent]:
    return (
        FeedEvent.query.filter_by(user_id=user_id)
        .filter(FeedEvent.id > since)
        .order_by(FeedEvent.id.asc())
        .limit(limit)
        .all()
    )


def wait_for_events(
    user_id: int, since: int, limit: int, wait: float
) -> list[FeedEvent]:
    """Return events after ``since``, blocking up to ``wait`` seconds for new ones."""
    feed = get_feed()
    version = feed.version(user_id)
    events = pull_events(user_id, since, limit)
    if events or wait <= 0:
        return events
    if not feed.wait_for_change(user_id, version, wait):
        return []
    # End the read transaction so the new rows are visible.
    db.session.rollback()
    current_app.logger.debug("Feed woke for user %s after cursor %s", user_id, since)
    return pull_events(user_id, since, limit)
