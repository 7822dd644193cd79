"""Citation link extraction.

Standard markdown links come from the token tree. Obsidian syntax that the
lexer does not know (wiki links, caret references, citation markers) and
markdown links the lexer rejects (anchors with raw spaces) come from per-line
regex scans. A regex match at a (line, column) already taken is skipped.
"""

from __future__ import annotations

import os
import re

from markdown_it import MarkdownIt

from ..models import ExtractionMarker, LinkObject, LinkSource, LinkTarget, PathInfo, SourcePath
from .tokens import MarkdownToken, walk

# Anchor body allowing two levels of nested parentheses: "Setup (Linux (x64))"
_ANCHOR = r"((?:[^()]|\((?:[^()]|\([^)]*\))*\))+)"

# [text](file.md#anchor) with raw spaces or colons in the anchor
MD_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)#]+\.md)(?:#" + _ANCHOR + r")?\)")

# [text](#anchor)
INTERNAL_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(#" + _ANCHOR + r"\)")

# [text](path/to/file#anchor) without a .md extension
RELATIVE_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]*/[^)#]+)(?:#" + _ANCHOR + r")?\)")

# [cite: path/to/file.md]
CITE_PATTERN = re.compile(r"\[cite:\s*([^\]]+)\]")

# [[file.md#anchor|text]]
WIKI_CROSS_DOC_PATTERN = re.compile(r"\[\[([^#\]]+\.md)(#([^|]+?))?\|([^\]]+)\]\]")

# [[#anchor|text]]
WIKI_INTERNAL_PATTERN = re.compile(r"\[\[#([^|]+)\|([^\]]+)\]\]")

# ^block-id, unless it is the anchor part of a link (#^block-id)
CARET_PATTERN = re.compile(r"(?<!#)\^([A-Za-z0-9-]+)")

# Text directly after a caret match that marks a semantic version (^14.0.1)
SEMVER_TAIL = re.compile(r"^\.\d")

# %%marker%% or <!-- marker --> after a link on the same line
EXTRACTION_MARKER_PATTERN = re.compile(r"\s*(%%(.+?)%%|<!--\s*(.+?)\s*-->)")

# Source form of an inline link: [text](dest "title")
_SOURCE_LINK_PATTERN = re.compile(
    r"(?<!!)\[((?:[^\[\]\\]|\\.|\[[^\]]*\])*)\]"
    r"\(\s*(<[^>\n]*>|(?:[^\s()\\]|\\.|\([^\s()]*\))*)(?:\s+(?:\"[^\"]*\"|'[^']*'|\([^)]*\)))?\s*\)"
)

# URL schemes are never citations (two letters minimum so C:/ paths survive)
_URL_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]+:")

_FENCE_PREFIXES = ("```", "~~~")


def determine_anchor_type(anchor: str | None) -> str | None:
    """Classify an anchor string: '^id' is a block reference, anything else a header."""
    if not anchor:
        return None
    if anchor.startswith("^"):
        return "block"
    return "header"


def resolve_path(raw_path: str | None, source_path: str) -> str | None:
    """Resolve a raw link path against the directory of the source document."""
    if not raw_path or not source_path:
        return None
    if os.path.isabs(raw_path):
        return raw_path
    return os.path.normpath(os.path.join(os.path.dirname(source_path), raw_path))


def detect_extraction_marker(line: str, link_end_column: int) -> ExtractionMarker | None:
    """Find a %%...%% or <!-- ... --> marker after the link end on the same line."""
    match = EXTRACTION_MARKER_PATTERN.search(line[link_end_column:])
    if not match:
        return None
    inner = match.group(2) if match.group(2) is not None else match.group(3)
    return ExtractionMarker(full_match=match.group(1), inner_text=(inner or "").strip())


def create_link_object(
    *,
    link_type: str,
    scope: str,
    anchor: str | None,
    raw_path: str | None,
    source_path: str,
    text: str | None,
    full_match: str,
    line: int,
    column: int,
    extraction_marker: ExtractionMarker | None = None,
    anchor_type: str | None = None,
) -> LinkObject:
    """Build a LinkObject, resolving the target path against the source directory.

    anchor_type overrides the classification derived from the anchor string,
    which caret references need since their anchor is stored without '^'.
    """
    absolute = resolve_path(raw_path, source_path)
    relative = os.path.relpath(absolute, os.path.dirname(source_path)) if absolute else None
    return LinkObject(
        link_type=link_type,
        scope=scope,
        anchor_type=anchor_type or determine_anchor_type(anchor),
        source=LinkSource(path=SourcePath(absolute=source_path)),
        target=LinkTarget(
            path=PathInfo(raw=raw_path, absolute=absolute, relative=relative),
            anchor=anchor,
        ),
        text=text,
        full_match=full_match,
        line=line,
        column=column,
        extraction_marker=extraction_marker,
    )


def is_inside_inline_code(line: str, position: int) -> bool:
    """Return True when position falls between unescaped backticks."""
    in_code = False
    for i, char in enumerate(line[:position]):
        if char == "`" and (i == 0 or line[i - 1] != "\\"):
            in_code = not in_code
    return in_code


def get_code_block_lines(lines: list[str]) -> set[int]:
    """1-based numbers of lines inside (or delimiting) fenced code blocks."""
    code_lines: set[int] = set()
    in_code_block = False
    for number, line in enumerate(lines, start=1):
        if line.strip().startswith(_FENCE_PREFIXES):
            code_lines.add(number)
            in_code_block = not in_code_block
        elif in_code_block:
            code_lines.add(number)
    return code_lines


def split_lines(content: str) -> list[str]:
    """Split content on newlines, dropping the carriage return of CRLF endings."""
    return [line.rstrip("\r") for line in content.split("\n")]


# ─────────────────────────────────────────────────────────────────────────────
# Token pass
# ─────────────────────────────────────────────────────────────────────────────


def _unwrap_destination(dest: str) -> str:
    if dest.startswith("<") and dest.endswith(">"):
        dest = dest[1:-1]
    return re.sub(r"\\(.)", r"\1", dest)


def _source_candidates(lines: list[str], start: int, end: int) -> list[tuple[int, re.Match]]:
    candidates = []
    for number in range(start, min(end, len(lines)) + 1):
        line = lines[number - 1]
        for match in _SOURCE_LINK_PATTERN.finditer(line):
            if not is_inside_inline_code(line, match.start()):
                candidates.append((number, match))
    return candidates


def _extract_token_links(
    md: MarkdownIt,
    tokens: list[MarkdownToken],
    lines: list[str],
    source_path: str,
    links: list[LinkObject],
) -> None:
    claimed: set[tuple[int, int]] = set()

    for block in walk(tokens):
        if block.line is None or block.type not in ("paragraph", "heading", "table_row", "table_cell"):
            continue
        link_nodes = [node for node in walk(block.tokens) if node.type == "link"]
        if not link_nodes:
            continue

        end_line = (block.end_line or block.line + 1) - 1
        candidates = _source_candidates(lines, block.line, max(end_line, block.line))

        for node in link_nodes:
            found = None
            for number, match in candidates:
                if (number, match.start()) in claimed:
                    continue
                dest = _unwrap_destination(match.group(2))
                if md.normalizeLink(dest) == node.href or dest == node.href:
                    found = (number, match, dest)
                    break
            if found is None:
                # Multi-line or unusual link syntax; the regex pass may still catch it.
                continue

            number, match, href = found
            claimed.add((number, match.start()))

            if not href or _URL_SCHEME.match(href):
                continue

            if href.startswith("#"):
                scope = "internal"
                raw_path = None
                anchor = href[1:] or None
            else:
                scope = "cross-document"
                raw_path, _, anchor_part = href.partition("#")
                anchor = anchor_part or None
                if not raw_path:
                    continue

            full_match = match.group(0)
            links.append(
                create_link_object(
                    link_type="markdown",
                    scope=scope,
                    anchor=anchor,
                    raw_path=raw_path,
                    source_path=source_path,
                    text=match.group(1),
                    full_match=full_match,
                    line=number,
                    column=match.start(),
                    extraction_marker=detect_extraction_marker(
                        lines[number - 1], match.start() + len(full_match)
                    ),
                )
            )


# ─────────────────────────────────────────────────────────────────────────────
# Regex pass
# ─────────────────────────────────────────────────────────────────────────────


def _taken(links: list[LinkObject], line: int, column: int) -> bool:
    return any(link.line == line and link.column == column for link in links)


def _usable(line: str, match: re.Match) -> bool:
    start = match.start()
    if start > 0 and line[start - 1] == "!":
        return False
    return not is_inside_inline_code(line, start)


def _extract_markdown_links_regex(line: str, number: int, source_path: str, links: list[LinkObject]) -> None:
    for match in MD_LINK_PATTERN.finditer(line):
        if not _usable(line, match) or _taken(links, number, match.start()):
            continue
        links.append(
            create_link_object(
                link_type="markdown",
                scope="cross-document",
                anchor=match.group(3),
                raw_path=match.group(2),
                source_path=source_path,
                text=match.group(1),
                full_match=match.group(0),
                line=number,
                column=match.start(),
                extraction_marker=detect_extraction_marker(line, match.end()),
            )
        )

    for match in INTERNAL_LINK_PATTERN.finditer(line):
        if not _usable(line, match) or _taken(links, number, match.start()):
            continue
        links.append(
            create_link_object(
                link_type="markdown",
                scope="internal",
                anchor=match.group(2),
                raw_path=None,
                source_path=source_path,
                text=match.group(1),
                full_match=match.group(0),
                line=number,
                column=match.start(),
                extraction_marker=detect_extraction_marker(line, match.end()),
            )
        )

    for match in RELATIVE_LINK_PATTERN.finditer(line):
        path = match.group(2)
        if not path or path.endswith(".md") or _URL_SCHEME.match(path) or "/" not in path:
            continue
        if not _usable(line, match) or _taken(links, number, match.start()):
            continue
        links.append(
            create_link_object(
                link_type="markdown",
                scope="cross-document",
                anchor=match.group(3),
                raw_path=path,
                source_path=source_path,
                text=match.group(1),
                full_match=match.group(0),
                line=number,
                column=match.start(),
                extraction_marker=detect_extraction_marker(line, match.end()),
            )
        )


def _extract_cite_links(line: str, number: int, source_path: str, links: list[LinkObject]) -> None:
    for match in CITE_PATTERN.finditer(line):
        if is_inside_inline_code(line, match.start()):
            continue
        raw_path = match.group(1).strip()
        links.append(
            create_link_object(
                link_type="markdown",
                scope="cross-document",
                anchor=None,
                raw_path=raw_path,
                source_path=source_path,
                text=f"cite: {raw_path}",
                full_match=match.group(0),
                line=number,
                column=match.start(),
                extraction_marker=detect_extraction_marker(line, match.end()),
            )
        )


def _extract_wiki_links(line: str, number: int, source_path: str, links: list[LinkObject]) -> None:
    for match in WIKI_CROSS_DOC_PATTERN.finditer(line):
        if is_inside_inline_code(line, match.start()):
            continue
        links.append(
            create_link_object(
                link_type="wiki",
                scope="cross-document",
                anchor=match.group(3),
                raw_path=match.group(1),
                source_path=source_path,
                text=match.group(4),
                full_match=match.group(0),
                line=number,
                column=match.start(),
                extraction_marker=detect_extraction_marker(line, match.end()),
            )
        )

    for match in WIKI_INTERNAL_PATTERN.finditer(line):
        if is_inside_inline_code(line, match.start()):
            continue
        links.append(
            create_link_object(
                link_type="wiki",
                scope="internal",
                anchor=match.group(1),
                raw_path=None,
                source_path=source_path,
                text=match.group(2),
                full_match=match.group(0),
                line=number,
                column=match.start(),
                extraction_marker=detect_extraction_marker(line, match.end()),
            )
        )


def _extract_caret_links(line: str, number: int, source_path: str, links: list[LinkObject]) -> None:
    for match in CARET_PATTERN.finditer(line):
        if is_inside_inline_code(line, match.start()):
            continue
        if SEMVER_TAIL.match(line[match.end():]):
            continue
        links.append(
            create_link_object(
                link_type="markdown",
                scope="internal",
                anchor=match.group(1),
                anchor_type="block",
                raw_path=None,
                source_path=source_path,
                text=None,
                full_match=match.group(0),
                line=number,
                column=match.start(),
                extraction_marker=detect_extraction_marker(line, match.end()),
            )
        )


def extract_links(
    md: MarkdownIt,
    tokens: list[MarkdownToken],
    content: str,
    source_path: str,
) -> list[LinkObject]:
    """Extract every citation in a document.

    Args:
        md: Lexer used to produce tokens (for link destination normalisation).
        tokens: Token tree of content.
        content: Full file content.
        source_path: Absolute path of the document.

    Returns:
        Links in discovery order: token links first, then regex links by line.
    """
    links: list[LinkObject] = []
    lines = split_lines(content)

    _extract_token_links(md, tokens, lines, source_path, links)

    code_lines = get_code_block_lines(lines)
    for number, line in enumerate(lines, start=1):
        if number in code_lines:
            continue
        _extract_markdown_links_regex(line, number, source_path, links)
        _extract_cite_links(line, number, source_path, links)
        _extract_wiki_links(line, number, source_path, links)
        _extract_caret_links(line, number, source_path, links)

    return links
