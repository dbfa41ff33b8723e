"""Pure functions for parsing and rendering flat ``KEY=value`` env files.

Parsing is lossless: every physical line becomes an ``EnvLine`` and
``EnvDocument.render()`` of an untouched document reproduces the input
exactly, including CRLF terminators and a missing final newline.  Lines that
are neither assignments, comments nor blank are kept as opaque pass-through
lines instead of being rejected.
"""

import re
from collections.abc import Iterator
from pathlib import Path

from envseal.models import EnvDocument, EnvLine, LineKind

# Optional indentation and ``export``, a shell-ish identifier, then the first ``=``.
_ASSIGNMENT = re.compile(
    r"^(?P<lead>\s*(?:export\s+)?)(?P<key>[A-Za-z_][A-Za-z0-9_.-]*)(?P<eq>\s*=)(?P<value>.*)$"
)


def split_lines(text: str) -> Iterator[tuple[str, str]]:
    """Yield ``(body, terminator)`` pairs; the terminator is ``\\n``, ``\\r\\n`` or ``""``."""
    pos = 0
    while pos < len(text):
        end = text.find("\n", pos)
        if end == -1:
            yield text[pos:], ""
            return
        body = text[pos:end]
        if body.endswith("\r"):
            yield body[:-1], "\r\n"
        else:
            yield body, "\n"
        pos = end + 1


def parse_line(raw: str, newline: str = "\n", number: int = 0) -> EnvLine:
    stripped = raw.strip()
    if not stripped:
        return EnvLine(raw=raw, kind=LineKind.BLANK, newline=newline, number=number)
    if stripped.startswith("#"):
        return EnvLine(raw=raw, kind=LineKind.COMMENT, newline=newline, number=number)
    match = _ASSIGNMENT.match(raw)
    if match is None:
        return EnvLine(raw=raw, kind=LineKind.OPAQUE, newline=newline, number=number)
    return EnvLine(
        raw=raw,
        kind=LineKind.ASSIGNMENT,
        newline=newline,
        number=number,
        key=match["key"],
        value=match["value"],
        prefix=match["lead"] + match["key"] + match["eq"],
    )


def parse_env_text(text: str, path: Path | str = "<memory>") -> EnvDocument:
    """Parse env file text into an ``EnvDocument``. Line numbers start at 1."""
    lines = [
        parse_line(body, newline, number)
        for number, (body, newline) in enumerate(split_lines(text), start=1)
    ]
    return EnvDocument(path=Path(path), lines=lines)
