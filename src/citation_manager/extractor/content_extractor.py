"""Content extraction with deduplication.

Validated, eligible cross-document links are turned into content blocks keyed
by a hash of their text. Links citing the same text share one block.
"""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING
from urllib.parse import unquote

from ..config import CONTENT_ID_LENGTH
from ..models import (
    EligibilityDecision,
    ExtractedContentBlock,
    ExtractionStats,
    FailureDetails,
    LinkObject,
    OutgoingLinksExtractedContent,
    OutgoingLinksReport,
    ProcessedLinkEntry,
    SourceLinkRef,
    ValidatedLink,
)
from ..parsed_file_cache import ParsedFileCache
from ..parser.markdown import ParseError
from .strategies import ExtractionFlags, ExtractionStrategy, analyze_eligibility

if TYPE_CHECKING:
    from ..parsed_document import ParsedDocument
    from ..validator import CitationValidator

log = logging.getLogger(__name__)


class ContentNotFoundError(Exception):
    """A section or block cited by a valid link could not be extracted."""

    pass


def generate_content_id(content: str) -> str:
    """First CONTENT_ID_LENGTH hex characters of the SHA-256 of content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:CONTENT_ID_LENGTH]


def normalize_block_id(anchor: str | None) -> str | None:
    """Drop the leading ^ of a block anchor."""
    if anchor and anchor.startswith("^"):
        return anchor[1:]
    return anchor


def decode_url_anchor(anchor: str | None) -> str | None:
    if anchor is None:
        return None
    return unquote(anchor)


class ContentExtractor:
    """Runs the eligibility chain and pulls cited content out of target documents."""

    def __init__(
        self,
        eligibility_strategies: list[ExtractionStrategy],
        parsed_file_cache: ParsedFileCache,
        citation_validator: CitationValidator,
    ) -> None:
        self.eligibility_strategies = eligibility_strategies
        self.parsed_file_cache = parsed_file_cache
        self.citation_validator = citation_validator

    def analyze_eligibility(self, link: LinkObject, flags: ExtractionFlags) -> EligibilityDecision:
        return analyze_eligibility(link, flags, self.eligibility_strategies)

    async def extract_links_content(
        self, source_file: str, flags: ExtractionFlags
    ) -> OutgoingLinksExtractedContent:
        """Validate source_file, then extract the content its links cite."""
        result = await self.citation_validator.validate_file(source_file)
        return await self.extract_content(result.links, flags)

    async def extract_content(
        self, validated_links: list[ValidatedLink], flags: ExtractionFlags
    ) -> OutgoingLinksExtractedContent:
        """Extract content for pre-validated links.

        Internal links are dropped. Links with validation errors and ineligible
        links are reported as skipped; sections or blocks that cannot be found
        are reported as failed.
        """
        blocks: dict[str, ExtractedContentBlock] = {}
        processed: list[ProcessedLinkEntry] = []
        stats = ExtractionStats()

        for link in validated_links:
            if link.scope == "internal":
                continue
            stats.total_links += 1

            if link.validation.status == "error":
                processed.append(
                    _skipped(link, f"Link failed validation: {link.validation.error}")
                )
                continue

            decision = self.analyze_eligibility(link, flags)
            if not decision.eligible:
                processed.append(_skipped(link, f"Link not eligible: {decision.reason}"))
                continue

            try:
                content = await self._retrieve_content(link)
            except (ContentNotFoundError, OSError, ParseError) as e:
                log.debug("Extraction failed for %s: %s", link.full_match, e)
                processed.append(
                    ProcessedLinkEntry(
                        source_link=link,
                        status="failed",
                        failure_details=FailureDetails(reason=str(e)),
                    )
                )
                continue

            content_id = generate_content_id(content)
            if content_id not in blocks:
                blocks[content_id] = ExtractedContentBlock(content=content, content_length=len(content))
                stats.unique_content += 1
            else:
                stats.duplicate_content_detected += 1
                stats.tokens_saved += len(content)
            blocks[content_id].source_links.append(
                SourceLinkRef(raw_source_link=link.full_match, source_line=link.line)
            )
            processed.append(ProcessedLinkEntry(source_link=link, content_id=content_id, status="extracted"))

        total_size = sum(block.content_length for block in blocks.values())
        if total_size + stats.tokens_saved:
            stats.compression_ratio = stats.tokens_saved / (total_size + stats.tokens_saved)

        return OutgoingLinksExtractedContent(
            extracted_content_blocks=blocks,
            outgoing_links_report=OutgoingLinksReport(processed_links=processed),
            stats=stats,
        )

    async def _retrieve_content(self, link: ValidatedLink) -> str:
        # Cross-directory links are recorded against the path they actually resolved to
        target_path = unquote(link.target.path.absolute or "")
        conversion = getattr(link.validation, "path_conversion", None)
        if conversion is not None:
            resolution = self.citation_validator.resolve_target_path(
                link.target.path.raw or "", link.source.path.absolute
            )
            target_path = resolution.path

        document = await self.parsed_file_cache.resolve_parsed_file(target_path)

        if link.anchor_type == "header":
            return _extract_header(document, link.target.anchor or "")
        if link.anchor_type == "block":
            block_id = normalize_block_id(link.target.anchor)
            content = document.extract_block(block_id)
            if content is None:
                raise ContentNotFoundError(f"Block not found: {block_id}")
            return content
        return document.extract_full_content()


def _extract_header(document: ParsedDocument, raw_anchor: str) -> str:
    anchor = decode_url_anchor(raw_anchor) or ""
    content = document.extract_section(anchor)
    if content is None:
        # Explicit {#id} headings match the decoded id, punctuated headings the encoded one
        for candidate in dict.fromkeys((anchor, raw_anchor)):
            heading_text = document.heading_text_for_anchor(candidate)
            if heading_text is not None:
                content = document.extract_section(heading_text)
                break
    if content is None:
        raise ContentNotFoundError(f"Heading not found: {anchor}")
    return content


def _skipped(link: ValidatedLink, reason: str) -> ProcessedLinkEntry:
    return ProcessedLinkEntry(
        source_link=link,
        status="skipped",
        failure_details=FailureDetails(reason=reason),
    )
