"""Pydantic models for parsed links, anchors, validation results and extraction output.

Attributes are snake_case in Python. JSON output uses the camelCase aliases
(``model_dump(by_alias=True)``) consumed by existing tooling, so ``summary`` and
``links`` and every link field keep their established names.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising to camelCase while accepting field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OmitNoneModel(CamelModel):
    """Model whose optional fields are left out of the JSON when unset."""

    @model_serializer(mode="wrap")
    def _omit_none(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        return {key: value for key, value in data.items() if value is not None}


# =============================================================================
# Parser output
# =============================================================================


class ExtractionMarker(CamelModel):
    """Trailing %%...%% or <!-- ... --> annotation after a link."""

    full_match: str
    inner_text: str


class PathInfo(CamelModel):
    raw: str | None = None  # Path as written in the link
    absolute: str | None = None  # Resolved against the source document's directory
    relative: str | None = None  # Relative to the source document's directory


class LinkTarget(CamelModel):
    path: PathInfo = Field(default_factory=PathInfo)
    anchor: str | None = None


class SourcePath(CamelModel):
    absolute: str


class LinkSource(CamelModel):
    path: SourcePath


class LinkObject(CamelModel):
    """A single citation found in a source document.

    Fields:
        link_type: Syntax family, 'markdown' or 'wiki'
        scope: 'internal' (same document) or 'cross-document'
        anchor_type: 'header', 'block' or None when there is no anchor
        full_match: Exact matched substring, used for in-place rewrites
        line: 1-based line number
        column: 0-based column of the match
    """

    link_type: Literal["markdown", "wiki"]
    scope: Literal["internal", "cross-document"]
    anchor_type: Literal["header", "block"] | None = None
    source: LinkSource
    target: LinkTarget
    text: str | None = None
    full_match: str
    line: int
    column: int
    extraction_marker: ExtractionMarker | None = None

    @model_validator(mode="after")
    def _internal_links_have_no_path(self) -> LinkObject:
        if self.scope == "internal":
            path = self.target.path
            if path.raw is not None or path.absolute is not None or path.relative is not None:
                raise ValueError("internal links must not carry a target path")
        return self


class HeaderAnchor(CamelModel):
    """Anchor defined by a heading. url_encoded_id is always present."""

    anchor_type: Literal["header"] = "header"
    id: str
    url_encoded_id: str
    raw_text: str
    full_match: str
    line: int
    column: int


class BlockAnchor(CamelModel):
    """Anchor defined by ^id or ==**text**==. Never has raw text or an encoded id."""

    anchor_type: Literal["block"] = "block"
    id: str
    raw_text: None = None
    full_match: str
    line: int
    column: int


AnchorObject = Annotated[Union[HeaderAnchor, BlockAnchor], Field(discriminator="anchor_type")]


class HeadingObject(CamelModel):
    level: int
    text: str
    raw: str


# =============================================================================
# Validation
# =============================================================================


class PathConversion(CamelModel):
    """Machine-applicable rewrite for a link that resolved through another directory."""

    type: Literal["path-conversion"] = "path-conversion"
    original: str
    recommended: str


class ValidValidation(OmitNoneModel):
    status: Literal["valid"] = "valid"


class ErrorValidation(OmitNoneModel):
    status: Literal["error"] = "error"
    error: str
    suggestion: str | None = None


class WarningValidation(OmitNoneModel):
    status: Literal["warning"] = "warning"
    error: str | None = None
    suggestion: str | None = None
    path_conversion: PathConversion | None = None


ValidationMetadata = Annotated[
    Union[ValidValidation, ErrorValidation, WarningValidation],
    Field(discriminator="status"),
]


class ValidatedLink(LinkObject):
    """A LinkObject plus its validation verdict."""

    validation: ValidationMetadata


def enrich_link(link: LinkObject, validation: ValidValidation | ErrorValidation | WarningValidation) -> ValidatedLink:
    """Attach a validation verdict to a link, keeping every link field as is."""
    fields = {name: getattr(link, name) for name in LinkObject.model_fields}
    return ValidatedLink(**fields, validation=validation)


class ValidationSummary(CamelModel):
    total: int = 0
    valid: int = 0
    errors: int = 0
    warnings: int = 0

    @classmethod
    def from_links(cls, links: list[ValidatedLink]) -> ValidationSummary:
        statuses = [link.validation.status for link in links]
        return cls(
            total=len(statuses),
            valid=statuses.count("valid"),
            errors=statuses.count("error"),
            warnings=statuses.count("warning"),
        )


class ValidationResult(OmitNoneModel):
    """Validation output for one source file: {file, summary, links}."""

    file: str
    summary: ValidationSummary
    links: list[ValidatedLink] = Field(default_factory=list)
    validation_time: str | None = None  # Wall time of the validate operation, e.g. "0.1s"
    line_range: str | None = None  # Filled when --lines filtered the links


# =============================================================================
# Content extraction
# =============================================================================


class EligibilityDecision(CamelModel):
    eligible: bool
    reason: str


class SourceLinkRef(CamelModel):
    raw_source_link: str
    source_line: int


class ExtractedContentBlock(CamelModel):
    content: str
    content_length: int
    source_links: list[SourceLinkRef] = Field(default_factory=list)


class FailureDetails(CamelModel):
    reason: str


class ProcessedLinkEntry(CamelModel):
    source_link: ValidatedLink
    content_id: str | None = None
    status: Literal["extracted", "skipped", "failed"]
    failure_details: FailureDetails | None = None


class OutgoingLinksReport(CamelModel):
    processed_links: list[ProcessedLinkEntry] = Field(default_factory=list)


class ExtractionStats(CamelModel):
    total_links: int = 0
    unique_content: int = 0
    duplicate_content_detected: int = 0
    tokens_saved: int = 0  # Characters not repeated thanks to deduplication
    compression_ratio: float = 0.0


class OutgoingLinksExtractedContent(CamelModel):
    """Deduplicated extraction bundle keyed by content id."""

    extracted_content_blocks: dict[str, ExtractedContentBlock] = Field(default_factory=dict)
    outgoing_links_report: OutgoingLinksReport = Field(default_factory=OutgoingLinksReport)
    stats: ExtractionStats = Field(default_factory=ExtractionStats)

    @property
    def total_content_character_length(self) -> int:
        """Length of the serialised content blocks, reported for output size checks."""
        blocks = {
            content_id: block.model_dump(by_alias=True)
            for content_id, block in self.extracted_content_blocks.items()
        }
        return len(json.dumps(blocks, separators=(",", ":"), ensure_ascii=False))

    @model_serializer(mode="wrap")
    def _with_total_length(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        key = "extractedContentBlocks" if "extractedContentBlocks" in data else "extracted_content_blocks"
        data[key] = {"_totalContentCharacterLength": self.total_content_character_length, **data[key]}
        return data
