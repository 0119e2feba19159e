from __future__ import annotations

from dataclasses import dataclass, field

from app.services.common import normalize_url, parse_datetime, parse_tags, url_key


DUPLICATE_REASON_EXISTING = "existing"
DUPLICATE_REASON_IN_BATCH = "duplicate"

ROW_ERROR_INVALID_URL = "invalid URL"
ROW_ERROR_INVALID_DATE = "invalid date"


class ImportValidationError(ValueError):
    """Malformed import request; reported to the caller as a client error."""


@dataclass
class RawRow:
    row_number: int
    values: dict[str, str | None]

    def as_dict(self):
        return {"row_number": self.row_number, "values": dict(self.values)}


@dataclass
class FieldMapping:
    url: str
    title: str | None = None
    comment: str | None = None
    tags: str | None = None
    created_at: str | None = None

    def mapped_columns(self) -> dict[str, str]:
        columns = {
            "url": self.url,
            "title": self.title,
            "comment": self.comment,
            "tags": self.tags,
            "created_at": self.created_at,
        }
        return {
            name: column
            for name, column in columns.items()
            if normalize_column_name(column)
        }

    def as_dict(self):
        return {
            "url": self.url,
            "title": self.title,
            "comment": self.comment,
            "tags": self.tags,
            "created_at": self.created_at,
        }


@dataclass
class PreparedRow:
    row_number: int
    url: str
    title: str
    comment: str | None = None
    tags: list[str] = field(default_factory=list)
    created_at: str | None = None

    def as_dict(self):
        return {
            "row_number": self.row_number,
            "url": self.url,
            "title": self.title,
            "comment": self.comment,
            "tags": list(self.tags),
            "created_at": self.created_at,
        }


@dataclass
class RowError:
    row_number: int
    message: str
    column: str | None = None

    def as_dict(self):
        payload = {"row_number": self.row_number, "message": self.message}
        if self.column is not None:
            payload["column"] = self.column
        return payload


@dataclass
class DuplicateRow:
    row_number: int
    url: str
    reason: str

    def as_dict(self):
        return {"row_number": self.row_number, "url": self.url, "reason": self.reason}


def normalize_column_name(value: str | None) -> str | None:
    if not value:
        return None
    name = value.strip()
    return name or None


def read_column_value(row: RawRow, column: str | None) -> str | None:
    name = normalize_column_name(column)
    if not name:
        return None
    raw = row.values.get(name)
    if raw is None:
        return None
    value = str(raw).strip()
    return value or None


def build_prepared_row(row: RawRow, mapping: FieldMapping) -> PreparedRow | RowError:
    url = normalize_url(read_column_value(row, mapping.url))
    if not url:
        return RowError(
            row_number=row.row_number,
            message=ROW_ERROR_INVALID_URL,
            column=mapping.url,
        )

    created_at = None
    raw_date = read_column_value(row, mapping.created_at)
    if raw_date:
        try:
            created_at = parse_datetime(raw_date).isoformat()
        except ValueError:
            return RowError(
                row_number=row.row_number,
                message=ROW_ERROR_INVALID_DATE,
                column=mapping.created_at,
            )

    return PreparedRow(
        row_number=row.row_number,
        url=url,
        title=read_column_value(row, mapping.title) or url,
        comment=read_column_value(row, mapping.comment),
        tags=parse_tags(read_column_value(row, mapping.tags)),
        created_at=created_at,
    )


def partition_rows_by_url(
    rows: list[PreparedRow],
) -> tuple[list[PreparedRow], list[PreparedRow]]:
    # First occurrence of a URL wins; the scan must stay left to right.
    seen: set[str] = set()
    unique: list[PreparedRow] = []
    duplicates: list[PreparedRow] = []
    for row in rows:
        key = url_key(row.url)
        if key in seen:
            duplicates.append(row)
            continue
        seen.add(key)
        unique.append(row)
    return unique, duplicates


def validate_row_count(count: int, max_rows: int) -> None:
    if count < 1:
        raise ImportValidationError("no rows to import")
    if count > max_rows:
        raise ImportValidationError(
            f"too many rows: {count} (maximum {max_rows} per import)"
        )
