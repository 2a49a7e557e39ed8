"""Locate one executable statement inside generated text.

Extraction is a narrow heuristic, never a parser:

1. The first fenced block tagged with one of the dialect's fence tags.
2. The first untagged fenced block whose body starts with a statement prefix.
3. The first run of bare lines starting with a statement prefix, ending at
   a blank line or a line that reads like prose.

No match is a normal outcome: the caller finalizes the turn with prose only.
"""

import re

from nlquery.engines.base import QueryDialect

_FENCE_PATTERN = re.compile(r"```[ \t]*([A-Za-z0-9_+-]*)[ \t]*\r?\n(.*?)```", re.DOTALL)

_PROSE_STARTS = ("This ", "The ", "I ", "Here")

_ORPHAN_HEADER_PATTERN = re.compile(r"\*\*[^*]+:\*\*[ \t]*\n(?=\s*\n|\s*$)")
_EXCESS_NEWLINES_PATTERN = re.compile(r"\n{3,}")


def _starts_with_prefix(text: str, dialect: QueryDialect) -> bool:
    upper = text.lstrip().upper()
    for prefix in dialect.statement_prefixes:
        if not upper.startswith(prefix):
            continue
        rest = upper[len(prefix):]
        # Word prefixes must be followed by whitespace ("SELECTION" is prose)
        if not prefix[-1].isalpha() or not rest or rest[0].isspace():
            return True
    return False


def _extract_fenced(text: str, dialect: QueryDialect) -> str | None:
    tags = {tag.lower() for tag in dialect.fence_tags}
    untagged_match: str | None = None
    for match in _FENCE_PATTERN.finditer(text):
        tag = match.group(1).lower()
        body = match.group(2).strip()
        if not body:
            continue
        if tag in tags:
            return body
        if not tag and untagged_match is None and _starts_with_prefix(body, dialect):
            untagged_match = body
    return untagged_match


def _extract_bare(text: str, dialect: QueryDialect) -> str | None:
    captured: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not captured:
            if stripped and _starts_with_prefix(stripped, dialect):
                captured.append(line.rstrip())
            continue
        if not stripped or stripped.startswith(_PROSE_STARTS):
            break
        captured.append(line.rstrip())
    if not captured:
        return None
    return "\n".join(captured).strip()


def extract_query(text: str, dialect: QueryDialect) -> str | None:
    """Return the single statement to execute, or None if none is recognisable.

    Args:
        text: Accumulated assistant response.
        dialect: Fence tags and statement prefixes of the bound engine.
    """
    if not text:
        return None
    return _extract_fenced(text, dialect) or _extract_bare(text, dialect)


def clean_response(text: str, dialect: QueryDialect | None = None) -> str:
    """Strip query and JSON blocks from the assistant prose.

    The statement is displayed separately from the prose, so fenced
    blocks tagged ``sql``, ``json`` or any dialect fence tag are removed,
    along with bold headers ("**Query:**") left with nothing under them.
    With a dialect, untagged blocks that extraction would accept as a
    statement are removed too.
    """
    tags = {"sql", "json"}
    if dialect is not None:
        tags.update(tag.lower() for tag in dialect.fence_tags)

    def _drop(match: re.Match) -> str:
        tag = match.group(1).lower()
        if tag in tags:
            return ""
        if not tag and dialect is not None and _starts_with_prefix(match.group(2), dialect):
            return ""
        return match.group(0)

    cleaned = _FENCE_PATTERN.sub(_drop, text)
    cleaned = _ORPHAN_HEADER_PATTERN.sub("", cleaned)
    cleaned = _EXCESS_NEWLINES_PATTERN.sub("\n\n", cleaned)
    return cleaned.strip()
