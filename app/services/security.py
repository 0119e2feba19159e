from __future__ import annotations

from functools import wraps

from flask import g, jsonify, request
from flask_login import current_user

from app.extensions import db
from app.models import ApiToken, User, utcnow


BEARER_PREFIX = "Bearer "


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.startswith(BEARER_PREFIX):
        return None
    return header[len(BEARER_PREFIX) :].strip() or None


def resolve_request_user() -> User | None:
    """Return the user behind the current request, if any.

    A logged-in session wins; otherwise a bearer token must match an
    unrevoked token of an active user. Using a token stamps last_used_at.
    """
    if current_user.is_authenticated and current_user.is_active:
        return current_user

    token = _bearer_token()
    if not token:
        return None
    api_token = ApiToken.find_active(token)
    if not api_token:
        return None
    api_token.last_used_at = utcnow()
    db.session.commit()
    return api_token.user


def api_auth_required(view):
    @wraps(view)
    def guarded(*args, **kwargs):
        g.api_user = resolve_request_user()
        if g.api_user is None:
            return jsonify({"error": "authentication required"}), 401
        return view(*args, **kwargs)

    return guarded
