from __future__ import annotations

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from smartmark.api import api_bp
from smartmark.errors import ValidationError
from smartmark.extensions import db
from smartmark.models import ApiToken, User
from smartmark.services.bookmarks import (
    create_bookmark,
    delete_bookmark,
    latest_cursor,
    list_bookmarks,
    wait_for_events,
)
from smartmark.services.common import validate_bookmark


MAX_FEED_BATCH = 500


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "SmartMark"})


@api_bp.route("/auth/token", methods=["POST"])
def create_token_with_credentials():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    token_name = (payload.get("token_name") or "SmartMark API Token").strip()

    user = User.query.filter_by(username=username).first()
    if not user or not user.is_active or not user.check_password(password):
        return jsonify({"error": "invalid credentials"}), 401

    token, token_hash = ApiToken.issue_token()
    row = ApiToken(user_id=user.id, name=token_name, token_hash=token_hash)
    db.session.add(row)
    db.session.commit()
    return jsonify({"token": token, "token_name": token_name, "user_id": user.id})


@api_bp.route("/me")
@login_required
def whoami():
    return jsonify({"id": current_user.id, "username": current_user.username})


@api_bp.route("/bookmarks", methods=["GET"])
@login_required
def bookmarks_list_api():
    items = list_bookmarks(current_user.id)
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/bookmarks", methods=["POST"])
@login_required
def bookmarks_create_api():
    payload = request.get_json(silent=True) or {}
    try:
        bookmark_payload = validate_bookmark(payload.get("title"), payload.get("url"))
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    bookmark = create_bookmark(current_user.id, bookmark_payload)
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["DELETE"])
@login_required
def bookmarks_delete_api(bookmark_id: int):
    if not delete_bookmark(current_user.id, bookmark_id):
        return jsonify({"error": "bookmark not found"}), 404
    return jsonify({"status": "deleted", "id": bookmark_id})


@api_bp.route("/feed/head", methods=["GET"])
@login_required
def feed_head():
    user_id = current_user.id
    return jsonify({"user_id": user_id, "cursor": latest_cursor(user_id)})


@api_bp.route("/feed", methods=["GET"])
@login_required
def feed_pull():
    user_id = current_user.id
    since = request.args.get("since", default=0, type=int)
    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, MAX_FEED_BATCH))
    wait = request.args.get("wait", default=0.0, type=float)
    wait = max(0.0, min(wait, float(current_app.config["FEED_MAX_WAIT_SECONDS"])))

    events = wait_for_events(user_id, since, limit, wait)
    cursor = events[-1].id if events else since
    return jsonify(
        {
            "events": [event.as_dict() for event in events],
            "cursor": cursor,
            "has_more": len(events) == limit,
        }
    )
