from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from app.models import Link
from app.services.common import url_key
from app.services.import_rows import (
    DUPLICATE_REASON_EXISTING,
    DUPLICATE_REASON_IN_BATCH,
    DuplicateRow,
    FieldMapping,
    ImportValidationError,
    PreparedRow,
    RawRow,
    RowError,
    build_prepared_row,
    normalize_column_name,
    partition_rows_by_url,
    validate_row_count,
)


EXISTING_LOOKUP_CHUNK_SIZE = 400


@dataclass
class PreviewResult:
    total: int
    ready: list[PreparedRow] = field(default_factory=list)
    duplicates: list[DuplicateRow] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    @property
    def summary(self) -> dict:
        return {
            "total": self.total,
            "ready": len(self.ready),
            "duplicates": len(self.duplicates),
            "errors": len(self.errors),
        }

    def as_dict(self):
        return {
            "rows": {
                "ready": [row.as_dict() for row in self.ready],
                "duplicates": [row.as_dict() for row in self.duplicates],
                "errors": [row.as_dict() for row in self.errors],
            },
            "summary": self.summary,
        }


def find_existing_url_keys(session: Session, user_id: int, urls: list[str]) -> set[str]:
    keys = [key for key in dict.fromkeys(url_key(url) for url in urls) if key]
    if not keys:
        return set()

    existing: set[str] = set()
    for i in range(0, len(keys), EXISTING_LOOKUP_CHUNK_SIZE):
        chunk = keys[i : i + EXISTING_LOOKUP_CHUNK_SIZE]
        rows = (
            session.query(Link.url_key)
            .filter(Link.user_id == user_id)
            .filter(Link.url_key.in_(chunk))
            .all()
        )
        existing.update(row.url_key for row in rows)
    return existing


def _parse_cell(column: str, value) -> str | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise ImportValidationError(f"value of column '{column}' must be a string or null")


def _parse_raw_rows(items, max_rows: int) -> list[RawRow]:
    if not isinstance(items, list):
        raise ImportValidationError("rows must be a list")
    validate_row_count(len(items), max_rows)

    rows: list[RawRow] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ImportValidationError(f"row {index} must be an object")
        row_number = item.get("row_number")
        if isinstance(row_number, bool) or not isinstance(row_number, int):
            raise ImportValidationError(f"row {index} has no integer row_number")
        if row_number < 1:
            raise ImportValidationError(f"row {index} has row_number below 1")
        values = item.get("values") or {}
        if not isinstance(values, dict):
            raise ImportValidationError(f"row {row_number} values must be an object")
        rows.append(
            RawRow(
                row_number=row_number,
                values={
                    str(column): _parse_cell(str(column), value)
                    for column, value in values.items()
                },
            )
        )
    return rows


def _parse_mapping(payload) -> FieldMapping:
    if not isinstance(payload, dict):
        raise ImportValidationError("mapping must be an object")

    columns: dict[str, str | None] = {}
    for name in ("url", "title", "comment", "tags", "created_at"):
        value = payload.get(name)
        if value is not None and not isinstance(value, str):
            raise ImportValidationError(f"mapping for {name} must be a column name")
        columns[name] = normalize_column_name(value)

    if not columns["url"]:
        raise ImportValidationError("choose the column that holds the URL")
    return FieldMapping(**columns)


def require_mapped_columns(rows: list[RawRow], mapping: FieldMapping) -> None:
    present: set[str] = set()
    for row in rows:
        present.update(row.values)
    for name, column in mapping.mapped_columns().items():
        if column not in present:
            raise ImportValidationError(
                f"column '{column}' mapped to {name} is not present in the rows"
            )


def parse_preview_request(payload, max_rows: int) -> tuple[list[RawRow], FieldMapping]:
    if not isinstance(payload, dict):
        raise ImportValidationError("request body must be a JSON object")
    rows = _parse_raw_rows(payload.get("rows"), max_rows)
    mapping = _parse_mapping(payload.get("mapping"))
    require_mapped_columns(rows, mapping)
    return rows, mapping


def build_import_preview(
    session: Session, user_id: int, rows: list[RawRow], mapping: FieldMapping
) -> PreviewResult:
    result = PreviewResult(total=len(rows))

    prepared: list[PreparedRow] = []
    for row in rows:
        outcome = build_prepared_row(row, mapping)
        if isinstance(outcome, RowError):
            result.errors.append(outcome)
        else:
            prepared.append(outcome)

    unique, in_batch = partition_rows_by_url(prepared)
    result.duplicates.extend(
        DuplicateRow(row.row_number, row.url, DUPLICATE_REASON_IN_BATCH)
        for row in in_batch
    )

    existing = find_existing_url_keys(session, user_id, [row.url for row in unique])
    for row in unique:
        if url_key(row.url) in existing:
            result.duplicates.append(
                DuplicateRow(row.row_number, row.url, DUPLICATE_REASON_EXISTING)
            )
        else:
            result.ready.append(row)
    return result
