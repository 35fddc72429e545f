from flask import jsonify

from smartmark.extensions import db, login_manager
from smartmark.models import ApiToken, utcnow


def _user_from_bearer_token(auth_header: str):
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        return None
    token_row = ApiToken.query.filter_by(token_hash=ApiToken.hash_token(token)).first()
    if not token_row or token_row.revoked_at is not None:
        return None
    if not token_row.user.is_active:
        return None
    token_row.last_used_at = utcnow()
    db.session.commit()
    return token_row.user


@login_manager.request_loader
def load_user_from_request(request):
    return _user_from_bearer_token(request.headers.get("Authorization", ""))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "authentication required"}), 401
