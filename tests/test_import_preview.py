import pytest

from app.extensions import db
from app.models import Link
from app.services.import_preview import (
    build_import_preview,
    find_existing_url_keys,
    parse_preview_request,
)
from app.services.import_rows import FieldMapping, ImportValidationError, RawRow
from tests.conftest import create_user


def _store_link(user, url: str):
    link = Link(user_id=user.id, url=url, url_key=url.lower(), title=url)
    db.session.add(link)
    db.session.commit()
    return link


def _rows(*urls):
    return [
        RawRow(row_number=index, values={"url": url})
        for index, url in enumerate(urls, start=2)
    ]


def test_preview_flags_in_batch_duplicates(app_ctx):
    user = create_user("alice")

    result = build_import_preview(
        db.session, user.id, _rows("https://a.com", "https://a.com/"), FieldMapping(url="url")
    )

    assert result.summary == {"total": 2, "ready": 1, "duplicates": 1, "errors": 0}
    assert result.ready[0].row_number == 2
    assert result.duplicates[0].as_dict() == {
        "row_number": 3,
        "url": "https://a.com/",
        "reason": "duplicate",
    }


def test_preview_reports_invalid_url(app_ctx):
    user = create_user("alice")

    result = build_import_preview(
        db.session, user.id, _rows("not a url"), FieldMapping(url="url")
    )

    assert result.summary["ready"] == 0
    assert len(result.errors) == 1
    assert "invalid URL" in result.errors[0].message


def test_preview_flags_links_the_user_already_has(app_ctx):
    user = create_user("alice")
    _store_link(user, "https://example.com/")

    result = build_import_preview(
        db.session, user.id, _rows("https://EXAMPLE.com"), FieldMapping(url="url")
    )

    assert result.ready == []
    assert [(d.row_number, d.reason) for d in result.duplicates] == [(2, "existing")]


def test_preview_ignores_links_of_other_users(app_ctx):
    alice = create_user("alice")
    bob = create_user("bob")
    _store_link(bob, "https://example.com/")

    result = build_import_preview(
        db.session, alice.id, _rows("https://example.com"), FieldMapping(url="url")
    )

    assert [row.url for row in result.ready] == ["https://example.com/"]
    assert result.duplicates == []


def test_preview_summary_accounts_for_every_row(app_ctx):
    user = create_user("alice")
    _store_link(user, "https://old.example/")
    rows = _rows(
        "https://new.example",
        "https://old.example",
        "https://new.example/",
        "mailto:someone@example.com",
        "https://other.example",
    )

    result = build_import_preview(db.session, user.id, rows, FieldMapping(url="url"))
    summary = result.summary

    assert summary["total"] == 5
    assert summary["ready"] + summary["duplicates"] + summary["errors"] == 5
    assert {d.reason for d in result.duplicates} == {"existing", "duplicate"}
    payload = result.as_dict()
    assert len(payload["rows"]["ready"]) == 2
    assert payload["summary"] == summary


def test_find_existing_url_keys_skips_query_for_empty_input(app_ctx):
    user = create_user("alice")

    assert find_existing_url_keys(db.session, user.id, []) == set()


def test_parse_preview_request_validates_payload():
    payload = {
        "rows": [{"row_number": 2, "values": {"Link": "https://a.com", "Stars": 5}}],
        "mapping": {"url": " Link ", "title": ""},
    }

    rows, mapping = parse_preview_request(payload, max_rows=10)

    assert rows[0].values == {"Link": "https://a.com", "Stars": "5"}
    assert mapping.url == "Link"
    assert mapping.title is None


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {"rows": "nope", "mapping": {"url": "url"}},
        {"rows": [], "mapping": {"url": "url"}},
        {"rows": [{"row_number": 0, "values": {}}], "mapping": {"url": "url"}},
        {"rows": [{"values": {"url": "x"}}], "mapping": {"url": "url"}},
        {"rows": [{"row_number": 2, "values": {"url": "x"}}], "mapping": {}},
        {"rows": [{"row_number": 2, "values": {"url": "x"}}], "mapping": {"url": "Link"}},
        {"rows": [{"row_number": 2, "values": {"url": ["x"]}}], "mapping": {"url": "url"}},
    ],
)
def test_parse_preview_request_rejects_malformed_payloads(payload):
    with pytest.raises(ImportValidationError):
        parse_preview_request(payload, max_rows=10)


def test_parse_preview_request_enforces_row_limit():
    payload = {
        "rows": [{"row_number": n, "values": {"url": "x"}} for n in range(2, 5)],
        "mapping": {"url": "url"},
    }

    with pytest.raises(ImportValidationError, match="too many rows"):
        parse_preview_request(payload, max_rows=2)


def test_preview_reports_unencodable_url_and_out_of_range_date_per_row(app_ctx):
    user = create_user("alice")
    rows = [
        RawRow(row_number=2, values={"url": "https://a.com/\ud800", "d": None}),
        RawRow(row_number=3, values={"url": "https://b.com", "d": "0001-01-01T00:00:00+05:00"}),
        RawRow(row_number=4, values={"url": "https://c.com", "d": "2024-05-01"}),
    ]

    result = build_import_preview(
        db.session, user.id, rows, FieldMapping(url="url", created_at="d")
    )

    assert result.summary == {"total": 3, "ready": 1, "duplicates": 0, "errors": 2}
    assert [(e.row_number, e.message) for e in result.errors] == [
        (2, "invalid URL"),
        (3, "invalid date"),
    ]
