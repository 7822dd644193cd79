"""Markdown parsing for citation validation."""

from .links import determine_anchor_type, resolve_path
from .markdown import MarkdownParser, ParseError, ParserOutput
from .tokens import MarkdownToken

__all__ = [
    "MarkdownParser",
    "MarkdownToken",
    "ParseError",
    "ParserOutput",
    "determine_anchor_type",
    "resolve_path",
]
