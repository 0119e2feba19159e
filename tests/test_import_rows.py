import pytest

from app.services.import_rows import (
    ROW_ERROR_INVALID_DATE,
    ROW_ERROR_INVALID_URL,
    FieldMapping,
    ImportValidationError,
    PreparedRow,
    RawRow,
    RowError,
    build_prepared_row,
    partition_rows_by_url,
    validate_row_count,
)


MAPPING = FieldMapping(
    url="URL", title="Title", comment="Notes", tags="Tags", created_at="Added"
)


def test_build_prepared_row_maps_and_normalizes_columns():
    row = RawRow(
        row_number=2,
        values={
            "URL": " HTTPS://Example.com ",
            "Title": "  Example  ",
            "Notes": "   ",
            "Tags": "news, Tech",
            "Added": "2024-03-01",
        },
    )

    prepared = build_prepared_row(row, MAPPING)

    assert isinstance(prepared, PreparedRow)
    assert prepared.url == "https://example.com/"
    assert prepared.title == "Example"
    assert prepared.comment is None
    assert prepared.tags == ["news", "Tech"]
    assert prepared.created_at == "2024-03-01T00:00:00+00:00"


def test_build_prepared_row_falls_back_to_url_for_title():
    row = RawRow(row_number=3, values={"URL": "https://example.com/page"})

    prepared = build_prepared_row(row, FieldMapping(url="URL", title="Title"))

    assert prepared.title == "https://example.com/page"
    assert prepared.tags == []
    assert prepared.created_at is None


def test_build_prepared_row_reports_invalid_url_before_invalid_date():
    row = RawRow(row_number=4, values={"URL": "nope", "Added": "garbage"})

    outcome = build_prepared_row(row, MAPPING)

    assert outcome == RowError(row_number=4, message=ROW_ERROR_INVALID_URL, column="URL")


def test_build_prepared_row_reports_invalid_date():
    row = RawRow(row_number=5, values={"URL": "https://example.com", "Added": "garbage"})

    outcome = build_prepared_row(row, MAPPING)

    assert isinstance(outcome, RowError)
    assert outcome.message == ROW_ERROR_INVALID_DATE
    assert outcome.as_dict() == {
        "row_number": 5,
        "message": ROW_ERROR_INVALID_DATE,
        "column": "Added",
    }


def test_build_prepared_row_treats_missing_url_cell_as_invalid():
    outcome = build_prepared_row(RawRow(row_number=6, values={"URL": None}), MAPPING)

    assert isinstance(outcome, RowError)
    assert outcome.message == ROW_ERROR_INVALID_URL


def test_partition_rows_by_url_keeps_first_occurrence():
    rows = [
        PreparedRow(row_number=2, url="https://a.com/", title="A"),
        PreparedRow(row_number=3, url="https://b.com/", title="B"),
        PreparedRow(row_number=4, url="https://A.com/", title="A again"),
    ]

    unique, duplicates = partition_rows_by_url(rows)

    assert [row.row_number for row in unique] == [2, 3]
    assert [row.row_number for row in duplicates] == [4]


def test_field_mapping_ignores_blank_columns():
    mapping = FieldMapping(url="URL", title="  ", comment=None, tags="Tags")

    assert mapping.mapped_columns() == {"url": "URL", "tags": "Tags"}


def test_validate_row_count_bounds():
    validate_row_count(1, 5)
    validate_row_count(5, 5)
    with pytest.raises(ImportValidationError):
        validate_row_count(0, 5)
    with pytest.raises(ImportValidationError):
        validate_row_count(6, 5)
