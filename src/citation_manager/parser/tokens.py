"""Fold markdown-it's flat token stream into a tree of MarkdownToken nodes.

Block nodes carry the exact source span they cover in ``raw``. A block's span
runs from its first line up to the first line of its next sibling (or the end
of its parent), so the ``raw`` of consecutive siblings concatenates back to the
source text including blank lines. Inline nodes carry their text as ``raw``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from markdown_it import MarkdownIt
from markdown_it.token import Token

# markdown-it open/close prefixes mapped to tree node types
_BLOCK_CONTAINERS = {
    "heading": "heading",
    "paragraph": "paragraph",
    "bullet_list": "list",
    "ordered_list": "list",
    "list_item": "list_item",
    "blockquote": "blockquote",
    "table": "table",
    "thead": "table_section",
    "tbody": "table_section",
    "tr": "table_row",
    "th": "table_cell",
    "td": "table_cell",
}

_BLOCK_LEAVES = {
    "fence": "code",
    "code_block": "code",
    "html_block": "html",
    "hr": "hr",
}

_INLINE_CONTAINERS = {
    "link": "link",
    "strong": "strong",
    "em": "em",
    "s": "del",
}

_INLINE_LEAVES = {
    "text": "text",
    "code_inline": "codespan",
    "html_inline": "html",
    "image": "image",
    "softbreak": "br",
    "hardbreak": "br",
}


@dataclass
class MarkdownToken:
    """A node of the markdown token tree."""

    type: str
    raw: str = ""
    line: int | None = None  # 1-based first source line, None for inline nodes
    end_line: int | None = None  # 1-based exclusive end line of the span
    depth: int | None = None  # Heading level
    text: str | None = None  # Heading/paragraph inline source, link text
    href: str | None = None  # Link/image destination
    tokens: list[MarkdownToken] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialise for the `ast` command, dropping unset fields."""
        data: dict = {"type": self.type, "raw": self.raw}
        for key in ("line", "depth", "text", "href"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.tokens:
            data["tokens"] = [child.to_dict() for child in self.tokens]
        return data


def create_markdown_it() -> MarkdownIt:
    """Create the lexer used for every document (CommonMark plus GFM tables)."""
    md = MarkdownIt("commonmark")
    md.enable("table")
    return md


def split_source_lines(content: str) -> list[str]:
    """Split on \\n only, keeping line endings, the way markdown-it numbers lines."""
    lines = re.split(r"(?<=\n)", content)
    if lines[-1] == "":
        lines.pop()
    return lines


def tokenize(md: MarkdownIt, content: str) -> list[MarkdownToken]:
    """Tokenize content and return the top-level nodes of the token tree."""
    lines = split_source_lines(content)
    flat = md.parse(content)
    roots = _fold_blocks(flat)
    _assign_spans(roots, lines, len(lines))
    return roots


def _fold_blocks(flat: list[Token]) -> list[MarkdownToken]:
    roots: list[MarkdownToken] = []
    stack: list[MarkdownToken] = []

    def attach(node: MarkdownToken) -> None:
        (stack[-1].tokens if stack else roots).append(node)

    for tok in flat:
        line, end_line = _token_lines(tok)
        if tok.nesting == 1:
            base = tok.type[: -len("_open")]
            node = MarkdownToken(type=_BLOCK_CONTAINERS.get(base, base), line=line, end_line=end_line)
            if base == "heading":
                node.depth = int(tok.tag[1:])
            attach(node)
            stack.append(node)
        elif tok.nesting == -1:
            if stack:
                stack.pop()
        elif tok.type == "inline":
            parent = stack[-1] if stack else None
            if parent is not None and parent.type in ("heading", "paragraph", "table_cell"):
                parent.text = tok.content
                parent.tokens.extend(_fold_inline(tok.children or []))
        else:
            node = MarkdownToken(type=_BLOCK_LEAVES.get(tok.type, tok.type), line=line, end_line=end_line)
            if tok.type in ("fence", "code_block"):
                node.text = tok.content
            attach(node)
    return roots


def _token_lines(tok: Token) -> tuple[int | None, int | None]:
    if tok.map:
        return tok.map[0] + 1, tok.map[1] + 1
    return None, None


def _fold_inline(children: list[Token]) -> list[MarkdownToken]:
    roots: list[MarkdownToken] = []
    stack: list[MarkdownToken] = []

    def attach(node: MarkdownToken) -> None:
        (stack[-1].tokens if stack else roots).append(node)

    for tok in children:
        if tok.nesting == 1:
            base = tok.type[: -len("_open")]
            node = MarkdownToken(type=_INLINE_CONTAINERS.get(base, base))
            if base == "link":
                href = tok.attrGet("href")
                node.href = str(href) if href is not None else ""
            attach(node)
            stack.append(node)
        elif tok.nesting == -1:
            if stack:
                node = stack.pop()
                node.raw = "".join(child.raw for child in node.tokens)
                node.text = node.raw
        else:
            node = MarkdownToken(type=_INLINE_LEAVES.get(tok.type, tok.type), raw=tok.content)
            if tok.type == "image":
                src = tok.attrGet("src")
                node.href = str(src) if src is not None else ""
            if tok.type in ("softbreak", "hardbreak"):
                node.raw = "\n"
            attach(node)
    return roots


def _assign_spans(nodes: list[MarkdownToken], lines: list[str], parent_end: int) -> None:
    """Set raw spans so that consecutive siblings concatenate to the source.

    parent_end is the 0-based exclusive line index where the enclosing span ends.
    """
    for index, node in enumerate(nodes):
        if node.line is None:
            continue
        start = node.line - 1
        end = parent_end
        for sibling in nodes[index + 1 :]:
            if sibling.line is not None:
                end = sibling.line - 1
                break
        end = max(end, start)
        node.raw = "".join(lines[start:end])
        node.end_line = end + 1
        _assign_spans(node.tokens, lines, end)


def walk(nodes: list[MarkdownToken]):
    """Yield every node depth-first, parents before children."""
    for node in nodes:
        yield node
        if node.tokens:
            yield from walk(node.tokens)
