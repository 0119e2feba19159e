from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import TAG_NAME_MAX_LENGTH, Tag
from app.services.common import normalize_tag_name


TAG_LOOKUP_CHUNK_SIZE = 400


def _wanted_tag_names(names: list[str]) -> list[str]:
    wanted: list[str] = []
    for name in names:
        key = normalize_tag_name(name)
        if not key:
            continue
        if len(key) > TAG_NAME_MAX_LENGTH:
            current_app.logger.warning(
                "Skipping tag longer than %s characters: %r", TAG_NAME_MAX_LENGTH, key
            )
            continue
        wanted.append(key)
    return list(dict.fromkeys(wanted))


def _fetch_tag_ids(session: Session, user_id: int, names: list[str]) -> dict[str, int]:
    found: dict[str, int] = {}
    for i in range(0, len(names), TAG_LOOKUP_CHUNK_SIZE):
        chunk = names[i : i + TAG_LOOKUP_CHUNK_SIZE]
        rows = (
            session.query(Tag.id, Tag.name)
            .filter(Tag.user_id == user_id)
            .filter(func.lower(Tag.name).in_(chunk))
            .order_by(Tag.id.asc())
            .all()
        )
        for row in rows:
            found.setdefault(normalize_tag_name(row.name), row.id)
    return found


def _create_tags(session: Session, user_id: int, names: list[str]) -> None:
    try:
        session.add_all([Tag(user_id=user_id, name=name) for name in names])
        session.commit()
        return
    except SQLAlchemyError:
        session.rollback()

    # Another request may have created some of them; go name by name.
    for name in names:
        try:
            session.add(Tag(user_id=user_id, name=name))
            session.commit()
        except IntegrityError:
            session.rollback()
        except SQLAlchemyError as exc:
            session.rollback()
            current_app.logger.warning(
                "Could not create tag %r for user %s: %s", name, user_id, exc
            )


def reconcile_tags(session: Session, user_id: int, names: list[str]) -> dict[str, int]:
    """Map lower-cased tag names to tag ids, creating the missing tags.

    Names are compared case-insensitively, so "Design" and "design" resolve to
    a single tag. Names that could not be created are left out of the result.
    """
    wanted = _wanted_tag_names(names)
    if not wanted:
        return {}

    tag_ids = _fetch_tag_ids(session, user_id, wanted)
    missing = [name for name in wanted if name not in tag_ids]
    if missing:
        _create_tags(session, user_id, missing)
        tag_ids.update(_fetch_tag_ids(session, user_id, missing))
    return tag_ids
