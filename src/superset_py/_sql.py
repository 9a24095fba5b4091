"""Jinja-aware text edits for dataset SQL.

Superset virtual datasets may embed Jinja (``{{ ... }}``, ``{% ... %}``,
``{# ... #}``).  Blocks are swapped for SQL comment placeholders before any
text edit and swapped back afterwards, so edits never touch template code.
"""

from __future__ import annotations

import re

from superset_py.errors import ParseError

_JINJA_RE = re.compile(r"(\{\{[\s\S]*?\}\})|(\{%[\s\S]*?%\})|(\{#[\s\S]*?#\})")
_OPENER_RE = re.compile(r"\{\{|\{%|\{#")
_PLACEHOLDER_RE = re.compile(r"/\*__JINJA_BLOCK_(\d+)__\*/")


def _placeholder(index: int) -> str:
    return f"/*__JINJA_BLOCK_{index}__*/"


def protect_jinja(sql: str, strict: bool = False) -> tuple[str, list[str]]:
    """Replace each Jinja block with a numbered placeholder.

    Returns ``(protected_sql, blocks)`` where ``blocks[i]`` is the text that
    placeholder ``i`` stands for.  With ``strict=True`` an opening delimiter
    left without its closer raises :class:`ParseError` instead of being
    passed through as plain text.
    """
    blocks: list[str] = []

    def _swap(match: re.Match[str]) -> str:
        blocks.append(match.group(0))
        return _placeholder(len(blocks) - 1)

    protected = _JINJA_RE.sub(_swap, sql)

    if strict:
        dangling = _OPENER_RE.search(protected)
        if dangling:
            raise ParseError(
                "sql",
                f"unterminated Jinja block starting with {dangling.group(0)!r}",
            )
    return protected, blocks


def restore_jinja(sql: str, blocks: list[str]) -> str:
    """Put the original Jinja blocks back in place of their placeholders."""

    def _swap(match: re.Match[str]) -> str:
        index = int(match.group(1))
        if index < len(blocks):
            return blocks[index]
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_swap, sql)


def replace_sql_text(sql: str, find: str, replace: str) -> tuple[str, int]:
    """Literal, global find/replace outside Jinja blocks.

    Returns ``(new_sql, count)``.  Matches that would span a Jinja block are
    not found, since the block is opaque during the edit.
    """
    if not find:
        raise ValueError("find text must not be empty.")

    protected, blocks = protect_jinja(sql, strict=True)

    # Placeholders sit at odd indexes after split; only even ones are SQL.
    parts = re.split(r"(/\*__JINJA_BLOCK_\d+__\*/)", protected)
    count = 0
    for i in range(0, len(parts), 2):
        hits = parts[i].count(find)
        if hits:
            count += hits
            parts[i] = parts[i].replace(find, replace)

    if not count:
        return sql, 0
    return restore_jinja("".join(parts), blocks), count
