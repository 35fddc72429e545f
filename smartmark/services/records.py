from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from dateutil import parser as dt_parser


ACTION_INSERT = "insert"
ACTION_DELETE = "delete"


def parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = dt_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class BookmarkPayload:
    url: str
    title: str

    def as_dict(self) -> dict:
        return {"url": self.url, "title": self.title}


@dataclass(frozen=True)
class Record:
    id: Any
    owner_id: Any
    url: str
    title: str
    created_at: datetime

    @property
    def payload(self) -> BookmarkPayload:
        return BookmarkPayload(url=self.url, title=self.title)

    @classmethod
    def from_dict(cls, data: dict) -> "Record":
        return cls(
            id=data["id"],
            owner_id=data["user_id"],
            url=data["url"],
            title=data["title"],
            created_at=parse_timestamp(data["created_at"]),
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "url": self.url,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Added:
    record: Record


@dataclass(frozen=True)
class Removed:
    record_id: Any


def event_from_dict(data: dict) -> Added | Removed:
    """Build a feed event from one item of the ``/feed`` response."""
    action = (data.get("action") or "").lower()
    if action == ACTION_INSERT:
        return Added(Record.from_dict(data["record"]))
    if action == ACTION_DELETE:
        return Removed(data["bookmark_id"])
    raise ValueError(f"unsupported feed action: {action!r}")


def sort_records(records: Iterable[Record]) -> list[Record]:
    # Newest first; equal timestamps fall back to ascending id. Both sorts
    # are stable, so the id order survives the second pass.
    by_id = sorted(records, key=lambda record: record.id)
    return sorted(by_id, key=lambda record: record.created_at, reverse=True)
