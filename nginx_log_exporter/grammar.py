"""Compile nginx ``log_format`` strings into line parsers.

A format such as::

    $remote_addr [$time_local] "$request" $status $body_bytes_sent

becomes an anchored regex where each ``$variable`` captures everything up
to the next literal character of the format. A trailing variable captures
the rest of the line.
"""

import re

from nginx_log_exporter.errors import ConfigError, LineParseError

_VARIABLE_RE = re.compile(r"\$([A-Za-z0-9_]+)")
_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def parse_number(value: str) -> float:
    """Convert a plain decimal field value to float.

    Only plain decimal or exponent notation is accepted; ``" 0.2"``,
    ``"1_0"`` and ``"nan"`` raise ValueError even though ``float()`` takes them.
    """
    if not _NUMBER_RE.fullmatch(value):
        raise ValueError(f"invalid number: {value!r}")
    return float(value)


def _compile_format(fmt: str) -> re.Pattern:
    parts = ["^"]
    pos = 0
    for m in _VARIABLE_RE.finditer(fmt):
        parts.append(re.escape(fmt[pos:m.start()]))
        if m.end() < len(fmt):
            stop = re.escape(fmt[m.end()])
            parts.append(f"(?P<{m.group(1)}>[^{stop}]*)")
        else:
            parts.append(f"(?P<{m.group(1)}>.*)")
        pos = m.end()
    parts.append(re.escape(fmt[pos:]))
    parts.append("$")
    return re.compile("".join(parts))


class Entry:
    """Named fields extracted from one log line."""

    def __init__(self, fields: dict[str, str]):
        self.fields = fields

    def field(self, name: str) -> str | None:
        return self.fields.get(name)

    def float_field(self, name: str) -> float | None:
        value = self.fields.get(name)
        if value is None:
            return None
        try:
            return parse_number(value)
        except ValueError:
            return None

    def __repr__(self):
        return f"Entry({self.fields!r})"


class Grammar:
    def __init__(self, fmt: str):
        self.format = fmt
        try:
            self._re = _compile_format(fmt)
        except re.error as e:
            # duplicate variable names end up here
            raise ConfigError(f"invalid log format '{fmt}': {e}") from e

    def parse(self, line: str) -> Entry:
        m = self._re.match(line)
        if m is None:
            raise LineParseError(f"line '{line}' does not match format '{self.format}'")
        return Entry(m.groupdict())
