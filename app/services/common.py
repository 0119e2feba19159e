from __future__ import annotations

import ipaddress
import re
from datetime import datetime, timezone
from urllib.parse import quote, urlsplit, urlunsplit

from dateutil import parser as dt_parser


ALLOWED_URL_SCHEMES = {"http", "https"}
DEFAULT_PORTS = {"http": 80, "https": 443}

_PATH_SAFE = "/%:@!$&'()*+,;=-._~"
_QUERY_SAFE = _PATH_SAFE + "?"
_HOST_PATTERN = re.compile(r"[a-z0-9_~-]+(?:\.[a-z0-9_~-]+)*\.?")
_TAG_SPLIT_PATTERN = re.compile(r"[,;|]")


def _normalize_host(hostname: str) -> str | None:
    host = hostname.strip().lower()
    if not host:
        return None
    if ":" in host:
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            return None
        return f"[{host}]"
    if not host.isascii():
        try:
            host = host.encode("idna").decode("ascii")
        except UnicodeError:
            return None
    if not _HOST_PATTERN.fullmatch(host):
        return None
    return host


def normalize_url(value: str | None) -> str | None:
    """Return the canonical form of an absolute http(s) URL, or None.

    Scheme and host are lower-cased, the default port is dropped and an empty
    path becomes "/". Path, query and fragment keep their case; characters that
    are not allowed in a URL are percent-encoded, existing escapes are kept.
    """
    text = (value or "").strip()
    if not text:
        return None

    try:
        parsed = urlsplit(text)
        port = parsed.port
    except ValueError:
        return None

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_URL_SCHEMES:
        return None

    host = _normalize_host(parsed.hostname or "")
    if not host:
        return None

    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"
    userinfo, separator, _ = parsed.netloc.rpartition("@")
    try:
        if separator and userinfo:
            netloc = f"{quote(userinfo, safe=_PATH_SAFE)}@{netloc}"
        path = quote(parsed.path, safe=_PATH_SAFE) or "/"
        query = quote(parsed.query, safe=_QUERY_SAFE)
        fragment = quote(parsed.fragment, safe=_QUERY_SAFE)
    except UnicodeEncodeError:
        # Lone surrogates cannot be percent-encoded.
        return None
    return urlunsplit((scheme, netloc, path, query, fragment))


def url_key(url: str) -> str:
    return url.strip().lower()


def parse_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    tokens = (token.strip() for token in _TAG_SPLIT_PATTERN.split(raw))
    return [token for token in tokens if token]


def normalize_tag_name(name: str) -> str:
    return name.strip().lower()


def _as_utc(parsed: datetime) -> datetime:
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_datetime(value: str) -> datetime:
    try:
        return _as_utc(dt_parser.parse(value))
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"unparseable date: {value!r}") from exc


def parse_iso_datetime(value: str) -> datetime:
    # Offsets near the calendar edges can overflow when shifted to UTC.
    try:
        return _as_utc(dt_parser.isoparse(value))
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"not an ISO-8601 timestamp: {value!r}") from exc
