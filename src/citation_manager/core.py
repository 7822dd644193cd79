"""Core operations used by the CLI.

CitationManager wires one parser, one parsed-file cache, one file cache, one
validator and one content extractor together for a single invocation. Nothing
here prints: results come back as models and the CLI decides how to show them.
"""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass, field

from .errors import (
    CitationFileNotFoundError,
    CitationManagerError,
    CitationValidationError,
    ErrorCode,
    InvalidLineRangeError,
)
from .extractor import ContentExtractor, ExtractionFlags, create_eligibility_strategies
from .file_cache import CacheStats, FileCache
from .models import (
    LinkObject,
    LinkSource,
    LinkTarget,
    OutgoingLinksExtractedContent,
    PathInfo,
    SourcePath,
    ValidatedLink,
    ValidationResult,
    ValidationSummary,
)
from .parsed_file_cache import ParsedFileCache
from .parser import MarkdownParser
from .parser.tokens import split_source_lines
from .validator import BETTER_FORMAT_PREFIX, CitationValidator, encode_uri_component

log = logging.getLogger(__name__)

_LINE_RANGE_PATTERN = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+)\s*)?$")

# '"Raw Heading" → #id' entries of an "Available headers" suggestion
_AVAILABLE_HEADER_PATTERN = re.compile(r'"([^"]+)"\s*→\s*#([^,;]+)')


def parse_line_range(value: str) -> tuple[int, int]:
    """Parse "10-50" or "7" into an inclusive (start, end) pair.

    Raises:
        InvalidLineRangeError: If value is malformed, zero, or reversed.
    """
    match = _LINE_RANGE_PATTERN.match(value)
    if not match:
        raise InvalidLineRangeError(value)
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else start
    if start < 1 or end < start:
        raise InvalidLineRangeError(value)
    return start, end


class LinkObjectFactory:
    """Builds links for content named on the command line rather than found in a file.

    The synthetic link is written as if it sat in the target file itself, so the
    raw path is just the target's filename and resolves without a file cache.
    """

    @staticmethod
    def _link(target_path: str, text: str, anchor: str | None, full_match: str) -> LinkObject:
        absolute = os.path.abspath(target_path)
        filename = os.path.basename(absolute)
        return LinkObject(
            link_type="markdown",
            scope="cross-document",
            anchor_type="header" if anchor else None,
            source=LinkSource(path=SourcePath(absolute=absolute)),
            target=LinkTarget(
                path=PathInfo(raw=filename, absolute=absolute, relative=filename),
                anchor=anchor,
            ),
            text=text,
            full_match=full_match,
            line=0,
            column=0,
        )

    def create_header_link(self, target_path: str, header_name: str) -> LinkObject:
        filename = os.path.basename(target_path)
        return self._link(target_path, header_name, header_name, f"[{header_name}]({filename}#{header_name})")

    def create_file_link(self, target_path: str) -> LinkObject:
        filename = os.path.basename(target_path)
        return self._link(target_path, filename, None, f"[{filename}]({filename})")


# ─────────────────────────────────────────────────────────────────────────────
# Fix reports
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class FixRecord:
    line: int
    fix_type: str  # "path", "anchor" or "path+anchor"
    old: str
    new: str


@dataclass
class FixReport:
    """Changes applied by CitationManager.fix()."""

    file: str
    fixes: list[FixRecord] = field(default_factory=list)

    @property
    def path_corrections(self) -> int:
        return sum(1 for fix in self.fixes if "path" in fix.fix_type)

    @property
    def anchor_corrections(self) -> int:
        return sum(1 for fix in self.fixes if "anchor" in fix.fix_type)

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "fixed": len(self.fixes),
            "pathCorrections": self.path_corrections,
            "anchorCorrections": self.anchor_corrections,
            "changes": [
                {"line": fix.line, "type": fix.fix_type, "old": fix.old, "new": fix.new} for fix in self.fixes
            ],
        }


def encode_header_anchor(header_text: str) -> str:
    return encode_uri_component(header_text)


def find_best_header_match(broken_anchor: str, headers: list[tuple[str, str]]) -> str | None:
    """Raw text of the header a kebab-case or mangled anchor most likely meant.

    headers holds (raw_text, id) pairs as listed in an "Available headers"
    suggestion.
    """
    normalized = broken_anchor.lstrip("#").replace("-", " ").lower()
    compact = re.sub(r"[.\s]", "", normalized)
    for raw_text, _ in headers:
        lowered = raw_text.lower()
        if lowered == normalized:
            return raw_text
        if re.sub(r"[.\s]", "", lowered) == compact:
            return raw_text
    return None


def suggested_anchor(link: ValidatedLink) -> str | None:
    """Replacement anchor for a fixable anchor problem, or None."""
    validation = link.validation
    suggestion = getattr(validation, "suggestion", None) or ""
    if BETTER_FORMAT_PREFIX in suggestion:
        return suggestion.split(BETTER_FORMAT_PREFIX, 1)[1].strip()

    error = getattr(validation, "error", None) or ""
    if link.target.anchor and "Anchor not found" in error and "Available headers:" in suggestion:
        headers = [(raw.strip(), anchor_id.strip()) for raw, anchor_id in _AVAILABLE_HEADER_PATTERN.findall(suggestion)]
        best = find_best_header_match(link.target.anchor, headers)
        if best:
            return encode_header_anchor(best)
    return None


def plan_fix(link: ValidatedLink) -> FixRecord | None:
    """Rewritten full_match for one link, or None when nothing can be fixed."""
    if link.validation.status == "valid":
        return None

    new_citation = link.full_match
    kinds = []

    conversion = getattr(link.validation, "path_conversion", None)
    if conversion is not None and conversion.original in new_citation:
        new_citation = new_citation.replace(conversion.original, conversion.recommended, 1)
        kinds.append("path")

    anchor = suggested_anchor(link)
    if anchor and link.target.anchor and anchor != link.target.anchor:
        old_fragment = f"#{link.target.anchor}"
        if old_fragment in new_citation:
            new_citation = new_citation.replace(old_fragment, f"#{anchor}", 1)
            kinds.append("anchor")

    if not kinds or new_citation == link.full_match:
        return None
    return FixRecord(line=link.line, fix_type="+".join(kinds), old=link.full_match, new=new_citation)


def apply_fixes(content: str, fixes: list[tuple[ValidatedLink, FixRecord]]) -> str:
    """Replace each fixed citation at its recorded line and column."""
    lines = split_source_lines(content)
    # Right to left so earlier columns on the same line stay valid
    for link, fix in sorted(fixes, key=lambda item: (item[0].line, item[0].column), reverse=True):
        index = link.line - 1
        if not 0 <= index < len(lines):
            continue
        line = lines[index]
        end = link.column + len(fix.old)
        if line[link.column:end] == fix.old:
            lines[index] = line[: link.column] + fix.new + line[end:]
        else:
            lines[index] = line.replace(fix.old, fix.new, 1)
    return "".join(lines)


# ─────────────────────────────────────────────────────────────────────────────
# CitationManager
# ─────────────────────────────────────────────────────────────────────────────


class CitationManager:
    """One invocation's worth of parser, caches, validator and extractor."""

    def __init__(self, scope: str | os.PathLike | None = None) -> None:
        self.parser = MarkdownParser()
        self.parsed_file_cache = ParsedFileCache(self.parser)
        self.file_cache = FileCache()
        self.validator = CitationValidator(self.parsed_file_cache, self.file_cache)
        self.content_extractor = ContentExtractor(
            create_eligibility_strategies(),
            self.parsed_file_cache,
            self.validator,
        )
        self.link_factory = LinkObjectFactory()
        self.cache_stats: CacheStats | None = None
        self.scope_scan_time = 0.0
        if scope is not None:
            self.build_scope(scope)

    def build_scope(self, scope: str | os.PathLike) -> CacheStats:
        """Index the scope folder so links can be resolved by filename.

        Raises:
            CitationManagerError: If scope is not a directory.
        """
        if not os.path.isdir(scope):
            raise CitationManagerError(
                ErrorCode.CONFIGURATION_ERROR,
                f"Scope folder not found: {scope}",
                {"scope": str(scope)},
            )
        started = time.perf_counter()
        self.cache_stats = self.file_cache.build_cache(scope)
        self.scope_scan_time = time.perf_counter() - started
        return self.cache_stats

    @staticmethod
    def _require_file(file_path: str | os.PathLike) -> str:
        path = os.path.abspath(file_path)
        if not os.path.isfile(path):
            raise CitationFileNotFoundError(str(file_path))
        return path

    async def get_ast(self, file_path: str | os.PathLike) -> dict:
        path = self._require_file(file_path)
        document = await self.parsed_file_cache.resolve_parsed_file(path)
        return document.data.to_dict()

    async def validate(self, file_path: str | os.PathLike, lines: str | None = None) -> ValidationResult:
        """Validate a file, optionally keeping only links inside a line range.

        Raises:
            InvalidLineRangeError: If lines is not "N" or "N-M".
            CitationFileNotFoundError: If file_path does not exist.
        """
        line_range = parse_line_range(lines) if lines else None
        started = time.perf_counter()
        result = await self.validator.validate_file(file_path)

        if line_range is not None:
            start, end = line_range
            result.links = [link for link in result.links if start <= link.line <= end]
            result.summary = ValidationSummary.from_links(result.links)
            result.line_range = f"{start}-{end}"

        result.validation_time = f"{time.perf_counter() - started:.1f}s"
        return result

    async def fix(self, file_path: str | os.PathLike) -> FixReport:
        """Apply path conversions and anchor corrections in place."""
        path = self._require_file(file_path)
        result = await self.validator.validate_file(path)

        planned = []
        for link in result.links:
            fix = plan_fix(link)
            if fix is not None:
                planned.append((link, fix))

        report = FixReport(file=path, fixes=[fix for _, fix in planned])
        if not planned:
            return report

        with open(path, encoding="utf-8", newline="") as f:
            content = f.read()
        updated = apply_fixes(content, planned)
        if updated != content:
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(updated)
            self.parsed_file_cache.clear()
        log.info("Fixed %d citation(s) in %s", len(planned), path)
        return report

    async def extract_links(
        self, file_path: str | os.PathLike, full_files: bool = False
    ) -> tuple[ValidationResult, OutgoingLinksExtractedContent]:
        """Validate a file and extract the content its links cite.

        Returns the validation result alongside the extraction so callers can
        report broken links.
        """
        result = await self.validator.validate_file(file_path)
        extracted = await self.content_extractor.extract_content(
            result.links, ExtractionFlags(full_files=full_files)
        )
        return result, extracted

    async def extract_header(self, file_path: str | os.PathLike, header_name: str) -> OutgoingLinksExtractedContent:
        path = self._require_file(file_path)
        link = self.link_factory.create_header_link(path, header_name)
        return await self._extract_synthetic(link, ExtractionFlags())

    async def extract_file(self, file_path: str | os.PathLike) -> OutgoingLinksExtractedContent:
        path = self._require_file(file_path)
        link = self.link_factory.create_file_link(path)
        return await self._extract_synthetic(link, ExtractionFlags(full_files=True))

    async def _extract_synthetic(self, link: LinkObject, flags: ExtractionFlags) -> OutgoingLinksExtractedContent:
        validated = await self.validator.validate_single_citation(link, link.source.path.absolute)
        if validated.validation.status == "error":
            raise CitationValidationError(validated.validation.error, validated.validation.suggestion)
        return await self.content_extractor.extract_content([validated], flags)
