"""Line codec for the servers file.

Each server is a block of ``KEY=value`` lines, optionally preceded by a
``# Server: <name>`` comment::

    # Server: web
    SSH_SERVER_WEB_HOST=10.0.0.5
    SSH_SERVER_WEB_USER=deploy
    SSH_SERVER_WEB_PORT=22
    SSH_SERVER_WEB_KEYPATH=/home/me/.ssh/id_ed25519
    SSH_SERVER_WEB_DESCRIPTION="Frontend box"

Parsing is permissive: anything that does not look like an entry is kept as
an opaque line so hand edits survive a rewrite.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

KEY_PREFIX = "SSH_SERVER_"

HOST = "HOST"
USER = "USER"
PORT = "PORT"
PASSWORD = "PASSWORD"
KEYPATH = "KEYPATH"
DESCRIPTION = "DESCRIPTION"
DEFAULT_DIR = "DEFAULT_DIR"

# Serialization order
FIELDS = (HOST, USER, PORT, PASSWORD, KEYPATH, DESCRIPTION, DEFAULT_DIR)

_QUOTED_FIELDS = {DESCRIPTION}
_ALWAYS_WRITTEN = {HOST, USER, PORT}

_ENTRY_RE = re.compile(r"^([^=#\s][^=\s]*)=(.*)$")
_COMMENT_RE = re.compile(r"^#\s*Server:\s*(.+?)\s*$")
_HOST_KEY_RE = re.compile(rf"^{KEY_PREFIX}(.+)_{HOST}$")
_QUOTED_RE = re.compile(r'^"(.*)"$', re.DOTALL)


class LineKind(Enum):
    ENTRY = "entry"
    SERVER_COMMENT = "server_comment"
    BLANK = "blank"
    OTHER = "other"


@dataclass(frozen=True)
class Line:
    kind: LineKind
    text: str
    key: str | None = None
    value: str | None = None
    # server name from a "# Server:" comment, as written
    server: str | None = None


def derive_key(name: str, field: str) -> str:
    return f"{KEY_PREFIX}{name.upper()}_{field.upper()}"


def key_prefix(name: str) -> str:
    return f"{KEY_PREFIX}{name.upper()}_"


def decode_value(raw: str) -> str:
    """Strip one pair of surrounding double quotes, leaving the interior as is."""
    m = _QUOTED_RE.match(raw)
    if m:
        return m.group(1)
    return raw


def encode_value(field: str, value: str) -> str:
    if field.upper() in _QUOTED_FIELDS:
        return f'"{value}"'
    return value


def server_name_from_key(key: str) -> str | None:
    """Return the lowercased server name for a host key, else None."""
    m = _HOST_KEY_RE.match(key)
    if not m:
        return None
    return m.group(1).lower()


def parse_line(text: str) -> Line:
    stripped = text.strip()
    if not stripped:
        return Line(LineKind.BLANK, text)
    m = _COMMENT_RE.match(stripped)
    if m:
        return Line(LineKind.SERVER_COMMENT, text, server=m.group(1))
    m = _ENTRY_RE.match(text)
    if m:
        return Line(LineKind.ENTRY, text, key=m.group(1), value=m.group(2))
    return Line(LineKind.OTHER, text)


def parse_text(text: str) -> list[Line]:
    return [parse_line(t) for t in text.splitlines()]


def render_lines(lines: list[Line]) -> str:
    if not lines:
        return ""
    return "\n".join(line.text for line in lines) + "\n"


def comment_line(name: str) -> str:
    return f"# Server: {name}"


def encode_block(name: str, fields: dict[str, str | int | None]) -> list[str]:
    """Render one server block in fixed field order.

    Host, user and port lines are always written; other empty fields are skipped.
    """
    out = [comment_line(name)]
    for field in FIELDS:
        value = fields.get(field)
        if value is None or value == "":
            if field not in _ALWAYS_WRITTEN:
                continue
            value = ""
        out.append(f"{derive_key(name, field)}={encode_value(field, str(value))}")
    return out
