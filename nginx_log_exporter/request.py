"""Helpers for nginx ``$request`` and ``$upstream_*_time`` values."""

import re
from urllib.parse import unquote

from nginx_log_exporter.errors import RequestParseError
from nginx_log_exporter.grammar import parse_number

_QUERY_RE = re.compile(r"\?.*", re.DOTALL)
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def unescape_path(path: str) -> str:
    """Percent-decode a path, rejecting malformed escapes."""
    if _BAD_ESCAPE_RE.search(path):
        raise RequestParseError(path, "invalid URL escape")
    try:
        return unquote(path, errors="strict")
    except UnicodeDecodeError as e:
        raise RequestParseError(path, f"invalid URL escape: {e}") from e


def parse_request(request: str) -> tuple[str, str]:
    """Split 'GET /path?q=1 HTTP/1.1' -> ('GET', '/path').

    The path is percent-decoded before the query string is stripped.
    """
    parts = request.split(" ")
    if len(parts) < 2:
        raise RequestParseError(request)
    path = _QUERY_RE.sub("", unescape_path(parts[1]))
    return parts[0], path


def parse_upstream_time(value: str) -> float:
    """Sum a '0.1, 0.2, 0.05' style upstream timing into one float.

    Raises ValueError if any element is not a number (nginx logs '-' for
    upstreams that never answered).
    """
    return sum(parse_number(part) for part in value.split(", "))
