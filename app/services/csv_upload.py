from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass

from rapidfuzz import fuzz

from app.services.import_rows import FieldMapping, ImportValidationError, RawRow


UPLOAD_ENCODINGS = ("utf-8-sig", "utf-8", "latin-1")
SNIFF_DELIMITERS = ",;\t"
SNIFF_SAMPLE_BYTES = 4096
FUZZY_COLUMN_THRESHOLD = 85

FIELD_ALIASES = {
    "url": ("url", "link", "href"),
    "title": ("title", "name", "label"),
    "comment": ("comment", "description", "notes"),
    "tags": ("tags", "tag", "labels"),
    "created_at": ("created at", "created", "date", "added at", "timestamp"),
}

_SEPARATOR_PATTERN = re.compile(r"[\s_\-]+")


@dataclass
class ParsedCsv:
    columns: list[str]
    rows: list[RawRow]


def decode_upload_bytes(raw_bytes: bytes) -> str:
    for encoding in UPLOAD_ENCODINGS:
        try:
            return raw_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ImportValidationError("could not decode upload, use a UTF-8 CSV file")


def _sniff_dialect(text: str):
    try:
        return csv.Sniffer().sniff(text[:SNIFF_SAMPLE_BYTES], delimiters=SNIFF_DELIMITERS)
    except csv.Error:
        return csv.excel


def _row_has_data(values: dict[str, str | None]) -> bool:
    return any(value and value.strip() for value in values.values())


def parse_csv_upload(raw_bytes: bytes, max_rows: int | None = None) -> ParsedCsv:
    text = decode_upload_bytes(raw_bytes)
    reader = csv.DictReader(io.StringIO(text), dialect=_sniff_dialect(text))
    if not reader.fieldnames:
        raise ImportValidationError("CSV must include a header row")

    reader.fieldnames = [(name or "").strip() for name in reader.fieldnames]
    columns = [name for name in reader.fieldnames if name]
    if not columns:
        raise ImportValidationError("CSV header row has no column names")

    rows: list[RawRow] = []
    try:
        for row_number, record in enumerate(reader, start=2):
            values = {column: value for column, value in record.items() if column}
            if _row_has_data(values):
                rows.append(RawRow(row_number=row_number, values=values))
    except csv.Error as exc:
        raise ImportValidationError(f"could not read CSV: {exc}") from exc

    if not rows:
        raise ImportValidationError("no data rows were found in the upload")
    if max_rows is not None and len(rows) > max_rows:
        raise ImportValidationError(
            f"upload is too large: {len(rows)} rows (maximum {max_rows} per import)"
        )
    return ParsedCsv(columns=columns, rows=rows)


def _column_label(column: str) -> str:
    return _SEPARATOR_PATTERN.sub(" ", column.strip().lower()).strip()


def _exact_match(columns: list[str], aliases: tuple[str, ...], taken: set[str]):
    labels = {column: _column_label(column) for column in columns if column not in taken}
    for alias in aliases:
        for column, label in labels.items():
            if label == alias:
                return column
    return None


def _fuzzy_match(columns: list[str], aliases: tuple[str, ...], taken: set[str]):
    best_column = None
    best_score = 0.0
    for column in columns:
        if column in taken:
            continue
        label = _column_label(column)
        score = max(fuzz.token_set_ratio(alias, label) for alias in aliases)
        if score >= FUZZY_COLUMN_THRESHOLD and score > best_score:
            best_column, best_score = column, score
    return best_column


def suggest_mapping(columns: list[str]) -> FieldMapping:
    """Guess which upload columns feed which link fields."""
    chosen: dict[str, str | None] = dict.fromkeys(FIELD_ALIASES)
    taken: set[str] = set()

    for matcher in (_exact_match, _fuzzy_match):
        for field_name, aliases in FIELD_ALIASES.items():
            if chosen[field_name]:
                continue
            column = matcher(columns, aliases, taken)
            if column:
                chosen[field_name] = column
                taken.add(column)

    if not chosen["url"]:
        untaken = [column for column in columns if column not in taken]
        chosen["url"] = (untaken or columns or [""])[0]
    return FieldMapping(**chosen)
