from datetime import datetime, timezone

import pytest

from app.services.common import (
    normalize_tag_name,
    normalize_url,
    parse_datetime,
    parse_iso_datetime,
    parse_tags,
    url_key,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://a.com", "https://a.com/"),
        ("  HTTPS://Example.COM/Path?Q=1#Frag  ", "https://example.com/Path?Q=1#Frag"),
        ("http://example.com:80/x", "http://example.com/x"),
        ("https://example.com:8443/x", "https://example.com:8443/x"),
        ("https://example.com/a b", "https://example.com/a%20b"),
        ("https://example.com/a%20b", "https://example.com/a%20b"),
        ("http://[::1]:8080/", "http://[::1]:8080/"),
        ("https://bücher.de/", "https://xn--bcher-kva.de/"),
    ],
)
def test_normalize_url_canonical_form(raw, expected):
    assert normalize_url(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "   ",
        "not a url",
        "/relative/path",
        "ftp://example.com/file",
        "javascript:alert(1)",
        "https://",
        "https://exa mple.com/",
        "http://example.com:99999/",
    ],
)
def test_normalize_url_rejects_invalid_values(raw):
    assert normalize_url(raw) is None


def test_normalize_url_is_idempotent():
    for raw in (
        "HTTPS://Example.com",
        "http://example.com:80/a b?x=1 2",
        "https://bücher.de/seite",
    ):
        once = normalize_url(raw)
        assert normalize_url(once) == once


def test_url_key_ignores_case():
    assert url_key("https://a.com/Path") == url_key("https://A.com/path")


def test_parse_tags_splits_and_trims_without_dedup():
    assert parse_tags("news, Tech ;tech|  ") == ["news", "Tech", "tech"]
    assert parse_tags("") == []
    assert parse_tags(None) == []
    assert parse_tags(" , ; | ") == []


def test_normalize_tag_name():
    assert normalize_tag_name("  Design ") == "design"


def test_parse_datetime_accepts_common_formats():
    assert parse_datetime("2024-01-02") == datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert parse_datetime("2024-01-02T10:30:00+02:00") == datetime(
        2024, 1, 2, 8, 30, tzinfo=timezone.utc
    )
    with pytest.raises(ValueError):
        parse_datetime("not a date")


def test_parse_iso_datetime_is_strict():
    assert parse_iso_datetime("2024-01-02T03:04:05Z") == datetime(
        2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc
    )
    with pytest.raises(ValueError):
        parse_iso_datetime("January 2nd")


@pytest.mark.parametrize(
    "raw",
    [
        "https://a.com/\ud800",
        "https://a.com/?q=\udfff",
        "https://a.com/#\ud800",
        "https://user\ud800@a.com/",
    ],
)
def test_normalize_url_rejects_lone_surrogates(raw):
    assert normalize_url(raw) is None


def test_normalize_url_keeps_userinfo():
    assert normalize_url("https://me:pw@Example.com/") == "https://me:pw@example.com/"


def test_date_parsers_reject_values_that_overflow_in_utc():
    with pytest.raises(ValueError):
        parse_datetime("0001-01-01T00:00:00+05:00")
    with pytest.raises(ValueError):
        parse_iso_datetime("0001-01-01T00:00:00+05:00")
    with pytest.raises(ValueError):
        parse_iso_datetime("9999-12-31T23:00:00-05:00")
