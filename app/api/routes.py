from __future__ import annotations

from flask import current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from app.api import api_bp
from app.extensions import db
from app.models import ApiToken, ImportRecord, Link, Tag, User
from app.services.csv_upload import parse_csv_upload, suggest_mapping
from app.services.import_commit import commit_import, parse_commit_request
from app.services.import_preview import build_import_preview, parse_preview_request
from app.services.import_rows import ImportValidationError
from app.services.security import api_auth_required


RECENT_IMPORTS_LIMIT = 20


def _json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _storage_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return _json_error(message, 500)


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Linkshelf"})


@api_bp.route("/auth/bootstrap-admin", methods=["POST"])
def bootstrap_admin_api():
    if User.query.count() > 0:
        return _json_error("bootstrap already completed", 409)

    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    if not username or not password:
        return _json_error("username and password are required")

    admin = User(username=username, is_admin=True, is_active=True)
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()
    return jsonify({"status": "created", "user_id": admin.id}), 201


@api_bp.route("/auth/token", methods=["POST"])
def create_token_with_credentials():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    token_name = (payload.get("token_name") or "Linkshelf API Token").strip()

    user = User.query.filter_by(username=username).first()
    if not user or not user.is_active or not user.check_password(password):
        return _json_error("invalid credentials", 401)

    token, token_hash = ApiToken.issue_token()
    db.session.add(ApiToken(user_id=user.id, name=token_name, token_hash=token_hash))
    db.session.commit()
    return jsonify({"token": token, "token_name": token_name, "user_id": user.id})


@api_bp.route("/links", methods=["GET"])
@api_auth_required
def links_list():
    user = g.api_user
    links = (
        Link.query.filter_by(user_id=user.id)
        .options(selectinload(Link.tags))
        .order_by(Link.created_at.desc(), Link.id.desc())
        .all()
    )
    return jsonify({"items": [link.as_dict() for link in links]})


@api_bp.route("/tags", methods=["GET"])
@api_auth_required
def tags_list():
    user = g.api_user
    tags = Tag.query.filter_by(user_id=user.id).order_by(Tag.name.asc()).all()
    return jsonify({"items": [{"id": tag.id, "name": tag.name} for tag in tags]})


@api_bp.route("/import/csv", methods=["POST"])
@api_auth_required
def import_csv_upload():
    upload = request.files.get("file")
    if not upload or not upload.filename:
        return _json_error("file field is required")

    try:
        parsed = parse_csv_upload(
            upload.read(), max_rows=current_app.config["IMPORT_MAX_ROWS"]
        )
    except ImportValidationError as exc:
        return _json_error(str(exc))

    return jsonify(
        {
            "file_name": upload.filename,
            "columns": parsed.columns,
            "rows": [row.as_dict() for row in parsed.rows],
            "mapping": suggest_mapping(parsed.columns).as_dict(),
        }
    )


@api_bp.route("/import/preview", methods=["POST"])
@api_auth_required
def import_preview():
    user = g.api_user
    try:
        rows, mapping = parse_preview_request(
            request.get_json(silent=True), current_app.config["IMPORT_MAX_ROWS"]
        )
    except ImportValidationError as exc:
        return _json_error(str(exc))

    try:
        result = build_import_preview(db.session, user.id, rows, mapping)
    except SQLAlchemyError:
        return _storage_error("could not build import preview")
    return jsonify(result.as_dict())


@api_bp.route("/import/commit", methods=["POST"])
@api_auth_required
def import_commit():
    user = g.api_user
    try:
        rows, source = parse_commit_request(
            request.get_json(silent=True), current_app.config["IMPORT_MAX_ROWS"]
        )
    except ImportValidationError as exc:
        return _json_error(str(exc))

    try:
        result = commit_import(
            db.session,
            user.id,
            rows,
            source=source,
            batch_size=current_app.config["IMPORT_INSERT_BATCH_SIZE"],
        )
    except SQLAlchemyError:
        return _storage_error("could not commit import")
    return jsonify(result.as_dict())


@api_bp.route("/imports", methods=["GET"])
@api_auth_required
def imports_list():
    user = g.api_user
    records = (
        ImportRecord.query.filter_by(user_id=user.id)
        .order_by(ImportRecord.created_at.desc(), ImportRecord.id.desc())
        .limit(RECENT_IMPORTS_LIMIT)
        .all()
    )
    return jsonify({"items": [record.as_dict() for record in records]})


@api_bp.route("/imports/<int:import_id>", methods=["GET"])
@api_auth_required
def imports_detail(import_id: int):
    user = g.api_user
    record = ImportRecord.query.filter_by(id=import_id, user_id=user.id).first()
    if not record:
        return _json_error("import not found", 404)

    payload = record.as_dict()
    payload["errors"] = [error.as_dict() for error in record.errors]
    return jsonify(payload)
