"""Markdown parsing into links, headings and anchors."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from markdown_it import MarkdownIt

from ..models import BlockAnchor, HeaderAnchor, HeadingObject, LinkObject
from .anchors import extract_anchors, extract_headings
from .links import extract_links
from .tokens import MarkdownToken, create_markdown_it, tokenize

log = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when a markdown file cannot be decoded."""

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


@dataclass
class ParserOutput:
    """Everything extracted from one markdown file."""

    file_path: str  # Absolute path of the parsed file
    content: str
    tokens: list[MarkdownToken] = field(default_factory=list)
    links: list[LinkObject] = field(default_factory=list)
    headings: list[HeadingObject] = field(default_factory=list)
    anchors: list[HeaderAnchor | BlockAnchor] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "filePath": self.file_path,
            "content": self.content,
            "tokens": [token.to_dict() for token in self.tokens],
            "links": [link.model_dump(by_alias=True) for link in self.links],
            "headings": [heading.model_dump(by_alias=True) for heading in self.headings],
            "anchors": [anchor.model_dump(by_alias=True) for anchor in self.anchors],
        }


class MarkdownParser:
    """Parses markdown files with CommonMark tokens plus Obsidian extension scans."""

    def __init__(self, md: MarkdownIt | None = None) -> None:
        self.md = md or create_markdown_it()

    async def parse_file(self, file_path: str | Path) -> ParserOutput:
        """Read and parse one markdown file.

        Args:
            file_path: Path to the markdown file. Relative paths resolve against cwd.

        Returns:
            ParserOutput with links, headings and anchors.

        Raises:
            OSError: If the file cannot be read.
            ParseError: If the file is not valid UTF-8.
        """
        path = Path(os.path.abspath(file_path))
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(path, f"File is not valid UTF-8: {e}") from e
        log.debug("Parsing %s", path)
        return self.parse_content(content, str(path))

    def parse_content(self, content: str, file_path: str) -> ParserOutput:
        """Parse already-loaded content as if it lived at file_path."""
        tokens = tokenize(self.md, content)
        return ParserOutput(
            file_path=file_path,
            content=content,
            tokens=tokens,
            links=extract_links(self.md, tokens, content, file_path),
            headings=extract_headings(tokens),
            anchors=extract_anchors(tokens, content),
        )
