from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import (
    IMPORT_SOURCE_MAX_LENGTH,
    IMPORT_STATUS_COMPLETED,
    IMPORT_STATUS_FAILED,
    IMPORT_STATUS_PENDING,
    ImportErrorRecord,
    ImportRecord,
    Link,
    link_tags,
    utcnow,
)
from app.services.common import (
    normalize_tag_name,
    normalize_url,
    parse_iso_datetime,
    url_key,
)
from app.services.import_preview import find_existing_url_keys
from app.services.import_rows import (
    ImportValidationError,
    PreparedRow,
    validate_row_count,
)
from app.services.tags import reconcile_tags


INSERT_BATCH_SIZE = 500
DEFAULT_IMPORT_SOURCE = "csv"

ERROR_CODE_DUPLICATE_URL = "duplicate_url"
ERROR_CODE_INSERT_FAILED = "insert_failed"


@dataclass
class CommitSummary:
    total: int
    imported: int
    duplicates: int
    failed: int
    status: str

    def as_dict(self):
        return {
            "total": self.total,
            "imported": self.imported,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "status": self.status,
        }


@dataclass
class CommitResult:
    import_id: int
    summary: CommitSummary

    def as_dict(self):
        return {"import_id": self.import_id, "summary": self.summary.as_dict()}


@dataclass
class _RowFailure:
    row: PreparedRow
    reason: str


def _parse_commit_row(index: int, item) -> PreparedRow:
    if not isinstance(item, dict):
        raise ImportValidationError(f"row {index} must be an object")

    row_number = item.get("row_number")
    if isinstance(row_number, bool) or not isinstance(row_number, int) or row_number < 1:
        raise ImportValidationError(f"row {index} needs a row_number of at least 1")

    raw_url = item.get("url")
    url = normalize_url(raw_url) if isinstance(raw_url, str) else None
    if not url:
        raise ImportValidationError(f"row {row_number}: url must be an absolute http(s) URL")

    title = item.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ImportValidationError(f"row {row_number}: title is required")

    comment = item.get("comment")
    if comment is not None and not isinstance(comment, str):
        raise ImportValidationError(f"row {row_number}: comment must be a string or null")

    tags = item.get("tags") or []
    if not isinstance(tags, list) or not all(
        isinstance(tag, str) and tag.strip() for tag in tags
    ):
        raise ImportValidationError(f"row {row_number}: tags must be non-empty strings")

    created_at = item.get("created_at")
    if created_at is not None:
        if not isinstance(created_at, str):
            raise ImportValidationError(f"row {row_number}: created_at must be a string")
        try:
            created_at = parse_iso_datetime(created_at).isoformat()
        except ValueError as exc:
            raise ImportValidationError(
                f"row {row_number}: created_at must be an ISO-8601 timestamp"
            ) from exc

    return PreparedRow(
        row_number=row_number,
        url=url,
        title=title.strip(),
        comment=(comment or "").strip() or None,
        tags=[tag.strip() for tag in tags],
        created_at=created_at,
    )


def parse_commit_request(payload, max_rows: int) -> tuple[list[PreparedRow], str]:
    if not isinstance(payload, dict):
        raise ImportValidationError("request body must be a JSON object")

    items = payload.get("rows")
    if not isinstance(items, list):
        raise ImportValidationError("rows must be a list")
    validate_row_count(len(items), max_rows)
    rows = [_parse_commit_row(index, item) for index, item in enumerate(items)]

    source = payload.get("source")
    if source is None:
        return rows, DEFAULT_IMPORT_SOURCE
    if not isinstance(source, str) or not source.strip():
        raise ImportValidationError("source must be a non-empty string")
    source = source.strip()
    if len(source) > IMPORT_SOURCE_MAX_LENGTH:
        raise ImportValidationError(
            f"source must be at most {IMPORT_SOURCE_MAX_LENGTH} characters"
        )
    return rows, source


def _chunk_rows(rows: list[PreparedRow], size: int) -> list[list[PreparedRow]]:
    return [rows[i : i + size] for i in range(0, len(rows), size)]


def _collect_tag_names(rows: list[PreparedRow]) -> list[str]:
    names: dict[str, None] = {}
    for row in rows:
        for tag in row.tags:
            key = normalize_tag_name(tag)
            if key:
                names.setdefault(key)
    return list(names)


def _record_import_errors(
    session: Session,
    import_id: int,
    failures: list[_RowFailure],
    error_code: str,
    message: str,
) -> None:
    if not failures:
        return
    session.add_all(
        [
            ImportErrorRecord(
                import_id=import_id,
                row_number=failure.row.row_number,
                url=failure.row.url,
                error_code=error_code,
                error_details={"message": message, "reason": failure.reason},
            )
            for failure in failures
        ]
    )
    session.commit()


def _insert_links(session: Session, user_id: int, rows: list[PreparedRow]) -> list[Link]:
    links = [
        Link(
            user_id=user_id,
            url=row.url,
            url_key=url_key(row.url),
            title=row.title,
            comment=row.comment,
            created_at=parse_iso_datetime(row.created_at)
            if row.created_at
            else utcnow(),
        )
        for row in rows
    ]
    session.add_all(links)
    session.flush()
    return links


def _attach_tags(
    session: Session,
    links: list[Link],
    rows: list[PreparedRow],
    tag_ids: dict[str, int],
) -> None:
    pairs: set[tuple[int, int]] = set()
    for link, row in zip(links, rows, strict=True):
        for tag in row.tags:
            tag_id = tag_ids.get(normalize_tag_name(tag))
            if tag_id is not None:
                pairs.add((link.id, tag_id))
    if pairs:
        session.execute(
            link_tags.insert(),
            [{"link_id": link_id, "tag_id": tag_id} for link_id, tag_id in sorted(pairs)],
        )


def _insert_batch(
    session: Session,
    user_id: int,
    rows: list[PreparedRow],
    tag_ids: dict[str, int],
) -> None:
    links = _insert_links(session, user_id, rows)
    _attach_tags(session, links, rows, tag_ids)
    session.commit()


def _insert_rows_individually(
    session: Session,
    user_id: int,
    import_id: int,
    rows: list[PreparedRow],
    tag_ids: dict[str, int],
) -> tuple[int, int, int]:
    imported = 0
    failures: list[_RowFailure] = []
    for row in rows:
        try:
            _insert_batch(session, user_id, [row], tag_ids)
            imported += 1
        except SQLAlchemyError as exc:
            session.rollback()
            failures.append(_RowFailure(row=row, reason=str(exc)[:160]))

    if not failures:
        return imported, 0, 0

    # A URL that exists now lost a race with a concurrent insert.
    existing = find_existing_url_keys(
        session, user_id, [failure.row.url for failure in failures]
    )
    raced = [f for f in failures if url_key(f.row.url) in existing]
    failed = [f for f in failures if url_key(f.row.url) not in existing]
    _record_import_errors(
        session, import_id, raced, ERROR_CODE_DUPLICATE_URL, "URL already exists"
    )
    _record_import_errors(
        session, import_id, failed, ERROR_CODE_INSERT_FAILED, "could not save link"
    )
    return imported, len(raced), len(failed)


def _execute_commit(
    session: Session,
    user_id: int,
    import_id: int,
    rows: list[PreparedRow],
    batch_size: int,
) -> CommitSummary:
    logger = current_app.logger

    existing = find_existing_url_keys(session, user_id, [row.url for row in rows])
    duplicates = [row for row in rows if url_key(row.url) in existing]
    pending = [row for row in rows if url_key(row.url) not in existing]
    _record_import_errors(
        session,
        import_id,
        [_RowFailure(row=row, reason="existing") for row in duplicates],
        ERROR_CODE_DUPLICATE_URL,
        "URL already exists",
    )

    tag_ids = reconcile_tags(session, user_id, _collect_tag_names(pending))

    imported = 0
    duplicate_count = len(duplicates)
    failed = 0
    for chunk in _chunk_rows(pending, batch_size):
        try:
            _insert_batch(session, user_id, chunk, tag_ids)
            imported += len(chunk)
            continue
        except SQLAlchemyError as exc:
            session.rollback()
            logger.warning(
                "Import %s: batch of %s rows failed, retrying row by row: %s",
                import_id,
                len(chunk),
                exc,
            )
        chunk_imported, chunk_raced, chunk_failed = _insert_rows_individually(
            session, user_id, import_id, chunk, tag_ids
        )
        imported += chunk_imported
        duplicate_count += chunk_raced
        failed += chunk_failed

    status = IMPORT_STATUS_COMPLETED
    if imported == 0 and pending:
        status = IMPORT_STATUS_FAILED

    record = session.get(ImportRecord, import_id)
    record.status = status
    record.imported_rows = imported
    record.duplicate_rows = duplicate_count
    record.failed_rows = failed
    session.commit()

    return CommitSummary(
        total=len(rows),
        imported=imported,
        duplicates=duplicate_count,
        failed=failed,
        status=status,
    )


def _mark_import_failed(session: Session, import_id: int) -> None:
    try:
        record = session.get(ImportRecord, import_id)
        if record and record.status == IMPORT_STATUS_PENDING:
            record.status = IMPORT_STATUS_FAILED
            session.commit()
    except SQLAlchemyError:
        session.rollback()
        current_app.logger.exception(
            "Import %s could not be marked as failed", import_id
        )


def commit_import(
    session: Session,
    user_id: int,
    rows: list[PreparedRow],
    source: str = DEFAULT_IMPORT_SOURCE,
    batch_size: int = INSERT_BATCH_SIZE,
) -> CommitResult:
    """Write validated rows as links for one user.

    Duplicates are re-checked against the store before inserting. Insert
    failures are recorded per row and never abort the import; storage errors
    outside the insert batches propagate after the import is marked failed.
    """
    logger = current_app.logger

    record = ImportRecord(
        user_id=user_id,
        source=source,
        status=IMPORT_STATUS_PENDING,
        total_rows=len(rows),
    )
    session.add(record)
    session.commit()
    import_id = record.id
    logger.info("Import %s started for user %s: %s rows", import_id, user_id, len(rows))

    try:
        summary = _execute_commit(session, user_id, import_id, rows, batch_size)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Import %s aborted by a storage error", import_id)
        _mark_import_failed(session, import_id)
        raise

    logger.info(
        "Import %s %s: imported=%s duplicates=%s failed=%s",
        import_id,
        summary.status,
        summary.imported,
        summary.duplicates,
        summary.failed,
    )
    return CommitResult(import_id=import_id, summary=summary)


def fail_stale_imports(session: Session, older_than: datetime) -> int:
    stale = (
        session.query(ImportRecord)
        .filter(ImportRecord.status == IMPORT_STATUS_PENDING)
        .filter(ImportRecord.created_at < older_than)
        .all()
    )
    for record in stale:
        record.status = IMPORT_STATUS_FAILED
    if stale:
        session.commit()
    return len(stale)
