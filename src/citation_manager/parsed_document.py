"""Query facade over parser output.

Validator and extractor code asks a ParsedDocument questions (does this anchor
exist, what is similar, give me this section) and never touches tokens.
"""

from __future__ import annotations

from rapidfuzz.distance import Levenshtein

from .config import ANCHOR_SIMILARITY_THRESHOLD, MAX_SIMILAR_ANCHORS
from .models import BlockAnchor, HeaderAnchor, HeadingObject, LinkObject
from .parser.markdown import ParserOutput
from .parser.tokens import MarkdownToken

# Token types whose raw text already contains their children
_RAW_INCLUSIVE_TYPES = frozenset({"heading", "paragraph", "text", "code", "html", "hr"})


def anchor_similarity(first: str, second: str) -> float:
    """Case-insensitive normalized Levenshtein similarity in [0, 1]."""
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0
    return Levenshtein.normalized_similarity(first.lower(), second.lower())


class ParsedDocument:
    """Read-only view of one parsed markdown file."""

    def __init__(self, parser_output: ParserOutput) -> None:
        self._data = parser_output
        self._cached_anchor_ids: list[str] | None = None

    @property
    def data(self) -> ParserOutput:
        return self._data

    @property
    def file_path(self) -> str:
        return self._data.file_path

    @property
    def anchors(self) -> list[HeaderAnchor | BlockAnchor]:
        return self._data.anchors

    @property
    def headings(self) -> list[HeadingObject]:
        return self._data.headings

    def has_anchor(self, anchor_id: str) -> bool:
        """True if anchor_id is an anchor id or a header anchor's URL-encoded id."""
        return any(
            anchor.id == anchor_id or (isinstance(anchor, HeaderAnchor) and anchor.url_encoded_id == anchor_id)
            for anchor in self._data.anchors
        )

    def find_similar_anchors(self, anchor_id: str) -> list[str]:
        """Anchor ids most similar to anchor_id, best first.

        Only candidates above ANCHOR_SIMILARITY_THRESHOLD are kept, at most
        MAX_SIMILAR_ANCHORS of them.
        """
        scored = [
            (candidate, anchor_similarity(anchor_id, candidate))
            for candidate in self._get_anchor_ids()
        ]
        matches = [item for item in scored if item[1] > ANCHOR_SIMILARITY_THRESHOLD]
        matches.sort(key=lambda item: item[1], reverse=True)
        return [candidate for candidate, _score in matches[:MAX_SIMILAR_ANCHORS]]

    def get_links(self) -> list[LinkObject]:
        return self._data.links

    def get_anchor_ids(self) -> list[str]:
        return list(self._get_anchor_ids())

    def extract_full_content(self) -> str:
        return self._data.content

    def heading_text_for_anchor(self, anchor_id: str) -> str | None:
        """Heading text of the header anchor addressed by anchor_id, if any.

        Needed for headings with an explicit {#id}, whose text differs from the id.
        """
        for anchor in self._data.anchors:
            if isinstance(anchor, HeaderAnchor) and anchor_id in (anchor.id, anchor.url_encoded_id):
                for node in self._flatten()[0]:
                    if node.type == "heading" and node.line == anchor.line:
                        return node.text
        return None

    def extract_section(self, heading_text: str, heading_level: int | None = None) -> str | None:
        """Source text of a section, from its heading to the next heading at the same or a shallower level.

        Args:
            heading_text: Exact heading text as written.
            heading_level: Heading depth; looked up from the headings list when omitted.

        Returns:
            The section source, or None when no such heading exists.
        """
        target_level = heading_level
        if target_level is None:
            heading = next((h for h in self._data.headings if h.text == heading_text), None)
            if heading is None:
                return None
            target_level = heading.level

        ordered, parents = self._flatten()
        target_index = next(
            (
                index
                for index, node in enumerate(ordered)
                if node.type == "heading" and node.text == heading_text and node.depth == target_level
            ),
            -1,
        )
        if target_index == -1:
            return None

        end_index = len(ordered)
        for index in range(target_index + 1, len(ordered)):
            node = ordered[index]
            if node.type == "heading" and (node.depth or 0) <= target_level:
                end_index = index
                break

        # A token whose parent is also in range is already part of the parent's raw
        return "".join(
            ordered[index].raw
            for index in range(target_index, end_index)
            if not (target_index <= parents[index] < end_index)
        )

    def extract_block(self, anchor_id: str | None) -> str | None:
        """The single source line holding the block anchor anchor_id."""
        if not anchor_id:
            return None
        anchor = next(
            (a for a in self._data.anchors if isinstance(a, BlockAnchor) and a.id == anchor_id),
            None,
        )
        if anchor is None:
            return None
        lines = self._data.content.split("\n")
        index = anchor.line - 1
        if index < 0 or index >= len(lines):
            return None
        return lines[index]

    def _flatten(self) -> tuple[list[MarkdownToken], list[int]]:
        """Depth-first block tokens plus the index of each token's parent (-1 at top level)."""
        ordered: list[MarkdownToken] = []
        parents: list[int] = []

        def visit(nodes: list[MarkdownToken], parent: int) -> None:
            for node in nodes:
                index = len(ordered)
                ordered.append(node)
                parents.append(parent)
                if node.tokens and node.type not in _RAW_INCLUSIVE_TYPES:
                    visit(node.tokens, index)

        visit(self._data.tokens, -1)
        return ordered, parents

    def _get_anchor_ids(self) -> list[str]:
        if self._cached_anchor_ids is None:
            ids: dict[str, None] = {}
            for anchor in self._data.anchors:
                ids[anchor.id] = None
                if isinstance(anchor, HeaderAnchor):
                    ids[anchor.url_encoded_id] = None
            self._cached_anchor_ids = list(ids)
        return self._cached_anchor_ids
