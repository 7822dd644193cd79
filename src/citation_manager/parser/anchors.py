"""Heading and anchor extraction."""

from __future__ import annotations

import re

from ..models import BlockAnchor, HeaderAnchor, HeadingObject
from .links import SEMVER_TAIL, get_code_block_lines, is_inside_inline_code, split_lines
from .tokens import MarkdownToken, walk

# Obsidian block reference closing a line: "Some paragraph ^my-block"
OBSIDIAN_BLOCK_PATTERN = re.compile(r"\^([a-zA-Z0-9\-_]+)$")

# Any other caret reference, kept for documents written before the end-of-line rule
LEGACY_CARET_PATTERN = re.compile(r"(?<!#)\^([A-Za-z0-9_-]+)")

# ==**Component Name**== emphasis-marked anchor
EMPHASIS_ANCHOR_PATTERN = re.compile(r"==\*\*([^*]+)\*\*==")

# "Heading text {#explicit-id}"
EXPLICIT_ID_PATTERN = re.compile(r"^(.+?)\s*\{#([^}]+)\}$")


def extract_headings(tokens: list[MarkdownToken]) -> list[HeadingObject]:
    """Flat depth-first list of every heading in the token tree."""
    return [
        HeadingObject(level=node.depth or 1, text=node.text or "", raw=node.raw)
        for node in walk(tokens)
        if node.type == "heading"
    ]


def url_encode_heading(text: str) -> str:
    """Obsidian's URL form of a heading: colons dropped, whitespace runs as %20."""
    return re.sub(r"\s+", "%20", text.replace(":", ""))


def _header_anchor(node: MarkdownToken, lines: list[str]) -> HeaderAnchor:
    text = node.text or ""
    line_number = node.line or 1
    full_match = lines[line_number - 1] if line_number <= len(lines) else node.raw.strip()

    explicit = EXPLICIT_ID_PATTERN.match(text)
    if explicit:
        explicit_id = explicit.group(2)
        return HeaderAnchor(
            id=explicit_id,
            url_encoded_id=explicit_id,
            raw_text=explicit.group(1).strip(),
            full_match=full_match,
            line=line_number,
            column=0,
        )
    return HeaderAnchor(
        id=text,
        url_encoded_id=url_encode_heading(text),
        raw_text=text,
        full_match=full_match,
        line=line_number,
        column=0,
    )


def extract_anchors(tokens: list[MarkdownToken], content: str) -> list[HeaderAnchor | BlockAnchor]:
    """Extract block anchors line by line, then header anchors from heading tokens.

    Lines inside fenced code and carets inside inline code define no anchors.
    """
    anchors: list[HeaderAnchor | BlockAnchor] = []
    lines = split_lines(content)
    code_lines = get_code_block_lines(lines)

    for number, line in enumerate(lines, start=1):
        if number in code_lines:
            continue

        block_match = OBSIDIAN_BLOCK_PATTERN.search(line)
        if block_match and not is_inside_inline_code(line, block_match.start()):
            anchors.append(
                BlockAnchor(
                    id=block_match.group(1),
                    full_match=block_match.group(0),
                    line=number,
                    column=line.rfind(block_match.group(0)),
                )
            )

        for match in LEGACY_CARET_PATTERN.finditer(line):
            if line.endswith(match.group(0)):
                continue  # Already taken as an end-of-line block reference
            if SEMVER_TAIL.match(line[match.end():]) or is_inside_inline_code(line, match.start()):
                continue
            anchors.append(
                BlockAnchor(
                    id=match.group(1),
                    full_match=match.group(0),
                    line=number,
                    column=match.start(),
                )
            )

        for match in EMPHASIS_ANCHOR_PATTERN.finditer(line):
            if is_inside_inline_code(line, match.start()):
                continue
            anchors.append(
                BlockAnchor(
                    id=match.group(1),
                    full_match=match.group(0),
                    line=number,
                    column=match.start(),
                )
            )

    for node in walk(tokens):
        if node.type == "heading" and node.line is not None:
            anchors.append(_header_anchor(node, lines))

    return anchors
