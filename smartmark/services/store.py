from __future__ import annotations

import httpx
from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from smartmark.errors import RejectedError, TransientFetchError
from smartmark.extensions import db
from smartmark.services.bookmarks import (
    create_bookmark,
    delete_bookmark,
    list_bookmarks,
)
from smartmark.services.records import BookmarkPayload, Record


DEFAULT_HEADERS = {
    "User-Agent": "SmartMarkClient/1.0",
    "Accept": "application/json",
}


class SqlStore:
    """Store backed directly by the application database.

    Every call runs in its own app context so it can be used from worker
    threads.
    """

    def __init__(self, app: Flask):
        self._app = app

    def fetch_all(self, user_id) -> list[Record]:
        with self._app.app_context():
            try:
                return [
                    Record.from_dict(bookmark.as_dict())
                    for bookmark in list_bookmarks(user_id)
                ]
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise TransientFetchError(f"could not load bookmarks: {exc}") from exc

    def insert(self, payload: BookmarkPayload, user_id) -> Record:
        with self._app.app_context():
            try:
                bookmark = create_bookmark(user_id, payload)
                return Record.from_dict(bookmark.as_dict())
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise TransientFetchError(f"could not save bookmark: {exc}") from exc

    def delete(self, record_id, user_id) -> None:
        with self._app.app_context():
            try:
                deleted = delete_bookmark(user_id, record_id)
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise TransientFetchError(f"could not delete bookmark: {exc}") from exc
        if not deleted:
            raise RejectedError("bookmark not found")


def build_client(base_url: str, token: str, timeout: float = 10.0) -> httpx.Client:
    headers = dict(DEFAULT_HEADERS)
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.Client(base_url=base_url, headers=headers, timeout=timeout)


def _error_message(response: httpx.Response) -> str:
    try:
        message = (response.json() or {}).get("error")
    except ValueError:
        message = None
    return message or f"HTTP {response.status_code}"


class HttpStore:
    """Store backed by the ``/bookmarks`` API.

    The server resolves the owner from the bearer token; ``user_id`` is only
    used to check that the token and the activation agree.
    """

    def __init__(self, client: httpx.Client):
        self._client = client

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientFetchError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 500:
            raise TransientFetchError(
                f"{method} {path} failed: {_error_message(response)}"
            )
        if response.status_code >= 400:
            raise RejectedError(_error_message(response))
        return response

    def _json(self, response: httpx.Response):
        try:
            return response.json()
        except ValueError as exc:
            raise TransientFetchError(f"malformed response: {exc}") from exc

    def _record(self, data: dict, user_id) -> Record:
        try:
            record = Record.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise TransientFetchError(f"malformed bookmark: {exc}") from exc
        if record.owner_id != user_id:
            raise RejectedError("bookmark owner does not match the current user")
        return record

    def fetch_all(self, user_id) -> list[Record]:
        response = self._request("GET", "/bookmarks")
        data = self._json(response)
        if not isinstance(data, dict):
            raise TransientFetchError("malformed bookmark list")
        items = data.get("items") or []
        return [self._record(item, user_id) for item in items]

    def insert(self, payload: BookmarkPayload, user_id) -> Record:
        response = self._request("POST", "/bookmarks", json=payload.as_dict())
        return self._record(self._json(response), user_id)

    def delete(self, record_id, user_id) -> None:
        self._request("DELETE", f"/bookmarks/{record_id}")

    def whoami(self) -> dict:
        return self._json(self._request("GET", "/me"))
